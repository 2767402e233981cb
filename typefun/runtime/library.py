"""The `types` library visible to user type functions."""

from __future__ import annotations

from typefun.runtime.values import (
    PRIMITIVE_TAGS,
    IndexerValue,
    PackValue,
    PropertyValue,
    TypeValue,
    check_type_value,
    make_pack,
    property_name,
)


def primitive(tag: str) -> TypeValue:
    assert tag in PRIMITIVE_TAGS
    return TypeValue(tag)


def singleton_value(value: bool | str) -> TypeValue:
    result = TypeValue('singleton')
    result._value = value
    return result


def generic_value(name: str, is_pack: bool = False) -> TypeValue:
    result = TypeValue('generic')
    result._name = name
    result._is_pack = is_pack
    return result


def set_value(tag: str, components: list[TypeValue]) -> TypeValue:
    result = TypeValue(tag)
    result._components = components
    return result


class TypesLibrary:
    """Constructors and primitives for building type values.

    Each runtime has one library. Its primitives are shared by every call
    and cannot be modified."""

    def __init__(self) -> None:
        self.nil = primitive('nil')
        self.boolean = primitive('boolean')
        self.number = primitive('number')
        self.string = primitive('string')
        self.thread = primitive('thread')
        self.buffer = primitive('buffer')
        self.unknown = primitive('unknown')
        self.never = primitive('never')
        self.any = primitive('any')

    def singleton(self, value: bool | str | None) -> TypeValue:
        if value is None:
            return self.nil
        if not isinstance(value, (bool, str)):
            raise TypeError(
                'types.singleton: can only create singletons of booleans, '
                'strings and None'
            )
        return singleton_value(value)

    def negationof(self, ty: TypeValue) -> TypeValue:
        check_type_value(ty)
        if ty.tag in ('table', 'function'):
            raise TypeError(
                f'types.negationof: cannot perform negation on {ty.tag} types'
            )
        result = TypeValue('negation')
        result._inner = ty
        return result

    def unionof(self, *tys: TypeValue) -> TypeValue:
        if len(tys) < 2:
            raise TypeError('types.unionof: at least 2 types must be passed')
        return set_value('union', [check_type_value(ty) for ty in tys])

    def intersectionof(self, *tys: TypeValue) -> TypeValue:
        if len(tys) < 2:
            raise TypeError(
                'types.intersectionof: at least 2 types must be passed'
            )
        return set_value('intersection', [check_type_value(ty) for ty in tys])

    def optional(self, ty: TypeValue) -> TypeValue:
        check_type_value(ty)
        if ty.tag == 'union':
            components = ty._components
            if any(component.tag == 'nil' for component in components):
                return ty
            return set_value('union', [*components, self.nil])
        if ty.tag == 'nil':
            return ty
        return set_value('union', [ty, self.nil])

    def newtable(
        self,
        props: dict[TypeValue | str, TypeValue | PropertyValue] | None = None,
        indexer: IndexerValue | dict[str, TypeValue] | None = None,
        metatable: TypeValue | None = None,
    ) -> TypeValue:
        result = TypeValue('table')
        for key, prop in (props or {}).items():
            name = property_name(key)
            if isinstance(prop, PropertyValue):
                result._properties[name] = PropertyValue(prop.read, prop.write)
            else:
                result.setproperty(name, prop)
        if isinstance(indexer, IndexerValue):
            result._indexer = IndexerValue(
                indexer.index, indexer.readresult, indexer.writeresult
            )
        elif indexer is not None:
            if 'index' not in indexer or 'readresult' not in indexer:
                raise TypeError(
                    "types.newtable: an indexer needs 'index' and "
                    "'readresult'"
                )
            read = check_type_value(indexer['readresult'])
            write = indexer.get('writeresult', read)
            result._indexer = IndexerValue(
                check_type_value(indexer['index']),
                read,
                None if write is None else check_type_value(write),
            )
        if metatable is not None:
            result.setmetatable(metatable)
        return result

    def newfunction(
        self,
        parameters: dict[str, object] | None = None,
        returns: dict[str, object] | None = None,
        generics: list[TypeValue] | None = None,
    ) -> TypeValue:
        result = TypeValue('function')
        result._parameters = _pack_from(parameters)
        result._returns = _pack_from(returns)
        result.setgenerics(generics)
        return result

    def copy(self, ty: TypeValue) -> TypeValue:
        """A deep copy of `ty`; cycles are preserved."""
        return _Copier().copy(check_type_value(ty))

    def generic(self, name: str = 'T', ispack: bool = False) -> TypeValue:
        if not isinstance(name, str) or not name:
            raise TypeError('types.generic: a generic needs a name')
        return generic_value(name, ispack)


def _pack_from(pack: dict[str, object] | None) -> PackValue:
    if pack is None:
        return make_pack(None, None)
    head = pack.get('head')
    tail = pack.get('tail')
    if head is not None and not isinstance(head, list):
        raise TypeError("a type pack 'head' must be a list of types")
    return make_pack(head, tail)  # type: ignore[arg-type]


class _Copier:
    def __init__(self) -> None:
        self.seen: dict[int, TypeValue] = {}

    def copy(self, ty: TypeValue | None) -> TypeValue | None:
        if ty is None:
            return None
        if ty.tag in PRIMITIVE_TAGS or ty.tag == 'class':
            return ty
        if id(ty) in self.seen:
            return self.seen[id(ty)]
        result = TypeValue(ty.tag)
        self.seen[id(ty)] = result
        result._value = ty._value
        result._name = ty._name
        result._is_pack = ty._is_pack
        result._inner = self.copy(ty._inner)
        result._components = [self.copy(c) for c in ty._components]
        result._properties = {
            name: PropertyValue(self.copy(prop.read), self.copy(prop.write))
            for name, prop in ty._properties.items()
        }
        if ty._indexer is not None:
            result._indexer = IndexerValue(
                self.copy(ty._indexer.index),
                self.copy(ty._indexer.readresult),
                self.copy(ty._indexer.writeresult),
            )
        result._metatable = self.copy(ty._metatable)
        for pack in ('_parameters', '_returns'):
            original = getattr(ty, pack)
            setattr(
                result,
                pack,
                make_pack(
                    [self.copy(t) for t in original.head],
                    self.copy(original.tail),
                ),
            )
        result._generics = [self.copy(g) for g in ty._generics]
        return result
