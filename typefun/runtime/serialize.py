"""Conversion between graph nodes and the type values user code sees.

Both directions memoize on the node they convert, so shared structure stays
shared and cycles terminate. Anything that has no type value form (free
types, unreduced instances, error types) raises SerializationError."""

from __future__ import annotations

from typing import TYPE_CHECKING

from typefun.errors import SerializationError, format_not_serializable_error
from typefun.runtime.library import (
    generic_value,
    primitive,
    set_value,
    singleton_value,
)
from typefun.runtime.values import (
    IndexerValue,
    PackValue,
    PropertyValue,
    TypeValue,
)
from typefun.types import (
    AnyType,
    ExternType,
    FunctionType,
    GenericType,
    GenericTypePack,
    IntersectionType,
    MetatableType,
    NegationType,
    NeverType,
    PrimitiveKind,
    PrimitiveType,
    Property,
    SingletonType,
    TableIndexer,
    TableType,
    TypeId,
    TypePack,
    TypePackId,
    UnionType,
    UnknownType,
    VariadicTypePack,
    follow,
    to_string,
)

if TYPE_CHECKING:
    from typefun.types import BuiltinTypes, TypeArena

_PRIMITIVE_TAGS = {
    PrimitiveKind.NIL: 'nil',
    PrimitiveKind.BOOLEAN: 'boolean',
    PrimitiveKind.NUMBER: 'number',
    PrimitiveKind.STRING: 'string',
    PrimitiveKind.THREAD: 'thread',
    PrimitiveKind.BUFFER: 'buffer',
}


class Serializer:
    def __init__(self) -> None:
        self._types: dict[TypeId, TypeValue] = {}
        self._packs: dict[TypePackId, TypeValue] = {}

    def serialize(self, ty: TypeId) -> TypeValue:
        ty = follow(ty)
        if ty in self._types:
            return self._types[ty]
        match ty.ty:
            case PrimitiveType(kind=kind) if kind in _PRIMITIVE_TAGS:
                value = primitive(_PRIMITIVE_TAGS[kind])
            case AnyType():
                value = primitive('any')
            case UnknownType():
                value = primitive('unknown')
            case NeverType():
                value = primitive('never')
            case SingletonType(value=literal):
                value = singleton_value(literal)
            case GenericType(name=name):
                value = generic_value(name)
            case NegationType(ty=inner):
                value = TypeValue('negation')
                self._types[ty] = value
                value._inner = self.serialize(inner)
            case UnionType(options=options):
                value = set_value('union', [])
                self._types[ty] = value
                value._components = [self.serialize(o) for o in options]
            case IntersectionType(parts=parts):
                value = set_value('intersection', [])
                self._types[ty] = value
                value._components = [self.serialize(p) for p in parts]
            case TableType() as table:
                value = TypeValue('table')
                self._types[ty] = value
                self._fill_table(value, table)
            case MetatableType(table=table, metatable=metatable):
                inner = follow(table).ty
                if not isinstance(inner, TableType):
                    raise SerializationError(
                        format_not_serializable_error(to_string(ty))
                    )
                value = TypeValue('table')
                self._types[ty] = value
                self._fill_table(value, inner)
                value._metatable = self.serialize(metatable)
            case FunctionType() as function:
                value = TypeValue('function')
                self._types[ty] = value
                value._generics = [self.serialize(g) for g in function.generics]
                value._generics += [
                    self._serialize_generic_pack(g) for g in function.generic_packs
                ]
                value._parameters = self._serialize_pack(function.arg_types)
                value._returns = self._serialize_pack(function.ret_types)
            case ExternType() as extern:
                value = TypeValue('class')
                value.origin = ty
                value._name = extern.name
                self._types[ty] = value
                self._fill_props(value, extern.props)
                if extern.indexer is not None:
                    value._indexer = self._serialize_indexer(extern.indexer)
                if extern.metatable is not None:
                    value._metatable = self.serialize(extern.metatable)
                if extern.parent is not None:
                    value._parent = self.serialize(extern.parent)
            case _:
                raise SerializationError(
                    format_not_serializable_error(to_string(ty))
                )
        self._types[ty] = value
        return value

    def _fill_table(self, value: TypeValue, table: TableType) -> None:
        self._fill_props(value, table.props)
        if table.indexer is not None:
            value._indexer = self._serialize_indexer(table.indexer)

    def _fill_props(self, value: TypeValue, props: dict[str, Property]) -> None:
        for name, prop in props.items():
            value._properties[name] = PropertyValue(
                None if prop.read_ty is None else self.serialize(prop.read_ty),
                None if prop.write_ty is None else self.serialize(prop.write_ty),
            )

    def _serialize_indexer(self, indexer: TableIndexer) -> IndexerValue:
        result = self.serialize(indexer.index_result_type)
        return IndexerValue(self.serialize(indexer.index_type), result, result)

    def _serialize_generic_pack(self, tp: TypePackId) -> TypeValue:
        tp = follow(tp)
        if tp not in self._packs:
            generic = tp.ty
            if not isinstance(generic, GenericTypePack):
                raise SerializationError(
                    format_not_serializable_error(to_string(tp))
                )
            self._packs[tp] = generic_value(generic.name, is_pack=True)
        return self._packs[tp]

    def _serialize_pack(self, tp: TypePackId) -> PackValue:
        head: list[TypeValue] = []
        seen: set[TypePackId] = set()
        tp = follow(tp)
        while isinstance(tp.ty, TypePack) and tp not in seen:
            seen.add(tp)
            head.extend(self.serialize(ty) for ty in tp.ty.head)
            if tp.ty.tail is None:
                return PackValue(head)
            tp = follow(tp.ty.tail)
        match tp.ty:
            case VariadicTypePack(ty=element):
                return PackValue(head, self.serialize(element))
            case GenericTypePack():
                return PackValue(head, self._serialize_generic_pack(tp))
        raise SerializationError(format_not_serializable_error(to_string(tp)))


class Deserializer:
    def __init__(self, arena: TypeArena, builtins: BuiltinTypes) -> None:
        self.arena = arena
        self.builtins = builtins
        self._types: dict[int, TypeId] = {}
        # One frame per enclosing generic function, innermost last.
        self._generic_scopes: list[
            dict[tuple[str, bool], TypeId | TypePackId]
        ] = []

    def deserialize(self, value: TypeValue) -> TypeId:
        if not isinstance(value, TypeValue):
            raise SerializationError(
                f'expected a type, got {type(value).__name__}'
            )
        if id(value) in self._types:
            return self._types[id(value)]
        builtins = self.builtins
        match value.tag:
            case 'nil' | 'boolean' | 'number' | 'string' | 'thread' | 'buffer':
                return builtins.primitive(PrimitiveKind(value.tag))
            case 'any':
                return builtins.any
            case 'unknown':
                return builtins.unknown
            case 'never':
                return builtins.never
            case 'singleton':
                if value._value is True:
                    return builtins.true_
                if value._value is False:
                    return builtins.false_
                ty = self.arena.add_type(SingletonType(value._value))
            case 'generic':
                if value._is_pack:
                    raise SerializationError(
                        f"Generic type pack '{value._name}' can only be used "
                        'as the tail of a type pack'
                    )
                return self._lookup_generic(value)  # type: ignore[return-value]
            case 'class':
                assert value.origin is not None
                return value.origin
            case 'negation':
                ty = self._reserve(value, NegationType(builtins.never))
                assert value._inner is not None
                self.arena.emplace_type(
                    ty, NegationType(self.deserialize(value._inner))
                )
            case 'union':
                union = UnionType([])
                ty = self._reserve(value, union)
                union.options.extend(
                    self.deserialize(c) for c in value._components
                )
            case 'intersection':
                intersection = IntersectionType([])
                ty = self._reserve(value, intersection)
                intersection.parts.extend(
                    self.deserialize(c) for c in value._components
                )
            case 'table':
                ty = self._deserialize_table(value)
            case 'function':
                ty = self._deserialize_function(value)
            case tag:
                raise SerializationError(f'cannot deserialize a {tag} type')
        self._types[id(value)] = ty
        return ty

    def _reserve(self, value: TypeValue, variant) -> TypeId:
        ty = self.arena.add_type(variant)
        self._types[id(value)] = ty
        return ty

    def _deserialize_table(self, value: TypeValue) -> TypeId:
        table = TableType()
        table_ty = self.arena.add_type(table)
        if value._metatable is not None:
            ty = self._reserve(value, MetatableType(table_ty, self.builtins.never))
        else:
            ty = table_ty
            self._types[id(value)] = ty
        for name, prop in value._properties.items():
            table.props[name] = Property(
                None if prop.read is None else self.deserialize(prop.read),
                None if prop.write is None else self.deserialize(prop.write),
            )
        if value._indexer is not None:
            indexer = value._indexer
            result = indexer.readresult or indexer.writeresult
            assert result is not None
            table.indexer = TableIndexer(
                self.deserialize(indexer.index), self.deserialize(result)
            )
        if value._metatable is not None:
            self.arena.emplace_type(
                ty, MetatableType(table_ty, self.deserialize(value._metatable))
            )
        return ty

    def _deserialize_function(self, value: TypeValue) -> TypeId:
        frame: dict[tuple[str, bool], TypeId | TypePackId] = {}
        generics: list[TypeId] = []
        generic_packs: list[TypePackId] = []
        for generic in value._generics:
            assert generic._name is not None
            key = (generic._name, generic._is_pack)
            if key in frame:
                continue
            if generic._is_pack:
                tp = self.arena.add_type_pack(GenericTypePack(generic._name))
                frame[key] = tp
                generic_packs.append(tp)
            else:
                ty = self.arena.add_type(GenericType(generic._name))
                frame[key] = ty
                generics.append(ty)
        self._generic_scopes.append(frame)
        try:
            function = FunctionType(
                self.builtins.empty_pack,
                self.builtins.empty_pack,
                generics,
                generic_packs,
            )
            ty = self._reserve(value, function)
            function.arg_types = self._deserialize_pack(value._parameters)
            function.ret_types = self._deserialize_pack(value._returns)
        finally:
            self._generic_scopes.pop()
        return ty

    def _deserialize_pack(self, pack: PackValue) -> TypePackId:
        head = [self.deserialize(ty) for ty in pack.head]
        tail: TypePackId | None = None
        if pack.tail is not None:
            if pack.tail.tag == 'generic' and pack.tail._is_pack:
                tail = self._lookup_generic(pack.tail)  # type: ignore[assignment]
            else:
                tail = self.arena.add_type_pack(
                    VariadicTypePack(self.deserialize(pack.tail))
                )
        if not head and tail is not None:
            return tail
        return self.arena.add_pack(head, tail)

    def _lookup_generic(self, value: TypeValue) -> TypeId | TypePackId:
        key = (value._name or '', value._is_pack)
        for frame in reversed(self._generic_scopes):
            if key in frame:
                return frame[key]
        kind = 'type pack' if value._is_pack else 'type'
        raise SerializationError(
            f"Generic {kind} '{value._name}' is not in a scope of the active "
            'generic function'
        )


def serialize(ty: TypeId) -> TypeValue:
    return Serializer().serialize(ty)


def deserialize(
    value: TypeValue, arena: TypeArena, builtins: BuiltinTypes
) -> TypeId:
    return Deserializer(arena, builtins).deserialize(value)
