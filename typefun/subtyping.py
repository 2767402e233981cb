"""A structural subtype test."""

from __future__ import annotations

from typefun.normalize import Normalizer
from typefun.simplify import Relation, TypeSimplifier
from typefun.types import (
    AnyType,
    BuiltinTypes,
    ErrorType,
    ExternType,
    FreeType,
    FreeTypePack,
    FunctionType,
    GenericTypePack,
    IntersectionType,
    MetatableType,
    NegationType,
    NeverType,
    PrimitiveKind,
    PrimitiveType,
    SingletonType,
    TableType,
    TypeArena,
    TypeId,
    TypePackId,
    UnionType,
    UnknownType,
    VariadicTypePack,
    extern_is_subclass,
    flatten,
    follow,
    get_pack,
)


class Subtyping:
    def __init__(
        self,
        builtins: BuiltinTypes,
        arena: TypeArena,
        normalizer: Normalizer | None = None,
    ) -> None:
        self.builtins = builtins
        self.arena = arena
        self.normalizer = normalizer
        self._assumed: set[tuple[TypeId, TypeId]] = set()

    def is_subtype(self, sub: TypeId, sup: TypeId) -> bool:
        sub = follow(sub)
        sup = follow(sup)
        if sub is sup:
            return True
        key = (sub, sup)
        # Coinductive: a pair met again while it is being checked holds.
        if key in self._assumed:
            return True
        self._assumed.add(key)
        try:
            return self._is_subtype(sub, sup)
        finally:
            self._assumed.discard(key)

    def _is_subtype(self, sub: TypeId, sup: TypeId) -> bool:
        sv, pv = sub.ty, sup.ty
        if isinstance(pv, (UnknownType, AnyType, ErrorType)):
            return True
        if isinstance(sv, (NeverType, AnyType, ErrorType)):
            return True
        if isinstance(sv, FreeType) or isinstance(pv, FreeType):
            return True
        match sv:
            case UnionType(options=options):
                return all(self.is_subtype(option, sup) for option in options)
            case IntersectionType(parts=parts):
                if any(self.is_subtype(part, sup) for part in parts):
                    return True
        match pv:
            case UnionType(options=options):
                return any(self.is_subtype(sub, option) for option in options)
            case IntersectionType(parts=parts):
                return all(self.is_subtype(sub, part) for part in parts)
            case NegationType(ty=negated):
                relation = TypeSimplifier(self.builtins, self.arena).relate(
                    sub, negated
                )
                return relation is Relation.DISJOINT
        if isinstance(sv, IntersectionType):
            return False

        match sv, pv:
            case PrimitiveType(kind=skind), PrimitiveType(kind=pkind):
                return skind is pkind
            case SingletonType(value=svalue), SingletonType(value=pvalue):
                return type(svalue) is type(pvalue) and svalue == pvalue
            case SingletonType(value=bool()), PrimitiveType(kind=kind):
                return kind is PrimitiveKind.BOOLEAN
            case SingletonType(value=str()), PrimitiveType(kind=kind):
                return kind is PrimitiveKind.STRING
            case TableType() | MetatableType(), PrimitiveType(kind=kind):
                return kind is PrimitiveKind.TABLE
            case FunctionType(), PrimitiveType(kind=kind):
                return kind is PrimitiveKind.FUNCTION
            case MetatableType(table=table), TableType():
                return self.is_subtype(table, sup)
            case MetatableType(), MetatableType():
                return self.is_subtype(sv.table, pv.table) and self.is_subtype(
                    sv.metatable, pv.metatable
                )
            case TableType(), TableType():
                return self._is_table_subtype(sv, pv)
            case FunctionType(), FunctionType():
                return self.is_pack_subtype(
                    pv.arg_types, sv.arg_types
                ) and self.is_pack_subtype(sv.ret_types, pv.ret_types)
            case ExternType(), ExternType():
                return extern_is_subclass(sub, sup)
        return False

    def _is_table_subtype(self, sub: TableType, sup: TableType) -> bool:
        for name, supprop in sup.props.items():
            subprop = sub.props.get(name)
            if subprop is None:
                # Absent properties read as nil.
                if supprop.read_ty is not None and not self.is_subtype(
                    self.builtins.nil, supprop.read_ty
                ):
                    return False
                continue
            if supprop.read_ty is not None:
                if subprop.read_ty is None or not self.is_subtype(
                    subprop.read_ty, supprop.read_ty
                ):
                    return False
            if supprop.write_ty is not None:
                if subprop.write_ty is None or not self.is_subtype(
                    supprop.write_ty, subprop.write_ty
                ):
                    return False
        if sup.indexer is not None:
            if sub.indexer is None:
                return False
            return (
                self.is_subtype(sup.indexer.index_type, sub.indexer.index_type)
                and self.is_subtype(
                    sub.indexer.index_result_type,
                    sup.indexer.index_result_type,
                )
            )
        return True

    def is_pack_subtype(self, sub: TypePackId, sup: TypePackId) -> bool:
        sub = follow(sub)
        sup = follow(sup)
        if sub is sup:
            return True
        sub_head, sub_tail = flatten(sub)
        sup_head, sup_tail = flatten(sup)
        sub_variadic = None if sub_tail is None else get_pack(sub_tail, VariadicTypePack)
        sup_variadic = None if sup_tail is None else get_pack(sup_tail, VariadicTypePack)

        for index, sup_ty in enumerate(sup_head):
            if index < len(sub_head):
                sub_ty = sub_head[index]
            elif sub_variadic is not None:
                sub_ty = sub_variadic.ty
            elif sub_tail is not None and _is_open(sub_tail):
                return True
            else:
                sub_ty = self.builtins.nil
            if not self.is_subtype(sub_ty, sup_ty):
                return False

        for sub_ty in sub_head[len(sup_head) :]:
            if sup_variadic is not None:
                if not self.is_subtype(sub_ty, sup_variadic.ty):
                    return False
            elif sup_tail is None or not _is_open(sup_tail):
                return False

        if sub_variadic is not None and sup_variadic is not None:
            return self.is_subtype(sub_variadic.ty, sup_variadic.ty)
        if sub_tail is not None and sup_tail is not None:
            return follow(sub_tail) is follow(sup_tail) or _is_open(
                sub_tail
            ) or _is_open(sup_tail)
        return True


def _is_open(tp: TypePackId) -> bool:
    return isinstance(follow(tp).ty, (FreeTypePack, GenericTypePack))


def is_subtype(
    builtins: BuiltinTypes, arena: TypeArena, sub: TypeId, sup: TypeId
) -> bool:
    return Subtyping(builtins, arena).is_subtype(sub, sup)
