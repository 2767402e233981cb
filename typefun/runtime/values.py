"""Type values as user type functions see them.

A TypeValue is a mutable, self-contained copy of part of the type graph.
User code builds and inspects these; it never touches a TypeId. Table and
function values may be modified in place, and may form cycles."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typefun.types import TypeId

PRIMITIVE_TAGS = frozenset(
    {
        'nil',
        'boolean',
        'number',
        'string',
        'thread',
        'buffer',
        'unknown',
        'never',
        'any',
    }
)

TAGS = PRIMITIVE_TAGS | {
    'singleton',
    'negation',
    'union',
    'intersection',
    'table',
    'function',
    'class',
    'generic',
}


@dataclass(eq=False)
class PropertyValue:
    read: TypeValue | None = None
    write: TypeValue | None = None


@dataclass(eq=False)
class IndexerValue:
    index: TypeValue
    readresult: TypeValue | None
    writeresult: TypeValue | None


@dataclass(eq=False)
class PackValue:
    head: list[TypeValue] = field(default_factory=list)
    # A variadic element type, or a generic pack.
    tail: TypeValue | None = None


class TypeValue:
    """One type, as seen from inside a user type function."""

    def __init__(self, tag: str) -> None:
        if tag not in TAGS:
            raise ValueError(f'unknown type tag {tag!r}')
        self.tag = tag
        self._value: bool | str | None = None
        self._inner: TypeValue | None = None
        self._components: list[TypeValue] = []
        self._properties: dict[str, PropertyValue] = {}
        self._indexer: IndexerValue | None = None
        self._metatable: TypeValue | None = None
        self._parameters = PackValue()
        self._returns = PackValue()
        self._generics: list[TypeValue] = []
        self._name: str | None = None
        self._is_pack = False
        self._parent: TypeValue | None = None
        # Classes are opaque; they deserialize back to the node they came
        # from.
        self.origin: TypeId | None = None

    def __repr__(self) -> str:
        match self.tag:
            case 'singleton':
                return f'TypeValue(singleton {self._value!r})'
            case 'generic' | 'class':
                return f'TypeValue({self.tag} {self._name})'
        return f'TypeValue({self.tag})'

    def _expect(self, *tags: str) -> None:
        if self.tag not in tags:
            raise TypeError(
                f'expected a {" or ".join(tags)} type, got a {self.tag} type'
            )

    def is_(self, tag: str) -> bool:
        if tag not in TAGS:
            raise ValueError(f'unknown type tag {tag!r}')
        return self.tag == tag

    def value(self) -> bool | str:
        self._expect('singleton')
        assert self._value is not None
        return self._value

    def inner(self) -> TypeValue:
        self._expect('negation')
        assert self._inner is not None
        return self._inner

    def components(self) -> list[TypeValue]:
        self._expect('union', 'intersection')
        return list(self._components)

    def properties(self) -> dict[str, PropertyValue]:
        self._expect('table', 'class')
        return {
            name: PropertyValue(prop.read, prop.write)
            for name, prop in self._properties.items()
        }

    def readproperty(self, key: TypeValue | str) -> TypeValue | None:
        self._expect('table', 'class')
        prop = self._properties.get(property_name(key))
        return None if prop is None else prop.read

    def writeproperty(self, key: TypeValue | str) -> TypeValue | None:
        self._expect('table', 'class')
        prop = self._properties.get(property_name(key))
        return None if prop is None else prop.write

    def setproperty(
        self, key: TypeValue | str, value: TypeValue | None = None
    ) -> None:
        """Set a read-write property, or remove it when `value` is None."""
        self._expect('table')
        name = property_name(key)
        if value is None:
            self._properties.pop(name, None)
            return
        check_type_value(value)
        self._properties[name] = PropertyValue(value, value)

    def setreadproperty(
        self, key: TypeValue | str, value: TypeValue | None = None
    ) -> None:
        self._set_half(key, value, 'read')

    def setwriteproperty(
        self, key: TypeValue | str, value: TypeValue | None = None
    ) -> None:
        self._set_half(key, value, 'write')

    def _set_half(
        self, key: TypeValue | str, value: TypeValue | None, half: str
    ) -> None:
        self._expect('table')
        name = property_name(key)
        if value is not None:
            check_type_value(value)
        prop = self._properties.setdefault(name, PropertyValue())
        setattr(prop, half, value)
        if prop.read is None and prop.write is None:
            del self._properties[name]

    def indexer(self) -> IndexerValue | None:
        self._expect('table', 'class')
        return self._indexer

    def setindexer(
        self, index: TypeValue | None, result: TypeValue | None = None
    ) -> None:
        self._expect('table')
        if index is None or (isinstance(index, TypeValue) and index.tag == 'never'):
            self._indexer = None
            return
        check_type_value(index)
        if result is None:
            raise TypeError('setindexer: a result type is required')
        check_type_value(result)
        self._indexer = IndexerValue(index, result, result)

    def metatable(self) -> TypeValue | None:
        self._expect('table', 'class')
        return self._metatable

    def setmetatable(self, metatable: TypeValue | None) -> None:
        self._expect('table')
        if metatable is not None:
            check_type_value(metatable)
            metatable._expect('table')
        self._metatable = metatable

    def parent(self) -> TypeValue | None:
        self._expect('class')
        return self._parent

    def parameters(self) -> PackValue:
        self._expect('function')
        return PackValue(list(self._parameters.head), self._parameters.tail)

    def setparameters(
        self, head: list[TypeValue] | None = None, tail: TypeValue | None = None
    ) -> None:
        self._expect('function')
        self._parameters = make_pack(head, tail)

    def returns(self) -> PackValue:
        self._expect('function')
        return PackValue(list(self._returns.head), self._returns.tail)

    def setreturns(
        self, head: list[TypeValue] | None = None, tail: TypeValue | None = None
    ) -> None:
        self._expect('function')
        self._returns = make_pack(head, tail)

    def generics(self) -> list[TypeValue]:
        self._expect('function')
        return list(self._generics)

    def setgenerics(self, generics: list[TypeValue] | None = None) -> None:
        self._expect('function')
        generics = [] if generics is None else list(generics)
        for generic in generics:
            check_type_value(generic)
            generic._expect('generic')
        self._generics = generics

    def name(self) -> str:
        self._expect('generic', 'class')
        assert self._name is not None
        return self._name

    def ispack(self) -> bool:
        self._expect('generic')
        return self._is_pack


def check_type_value(value: object) -> TypeValue:
    if not isinstance(value, TypeValue):
        raise TypeError(f'expected a type, got {type(value).__name__}')
    return value


def property_name(key: TypeValue | str) -> str:
    """Property keys are strings or string singleton types."""
    if isinstance(key, str):
        return key
    if (
        isinstance(key, TypeValue)
        and key.tag == 'singleton'
        and isinstance(key._value, str)
    ):
        return key._value
    raise TypeError('property keys must be strings or string singleton types')


def make_pack(
    head: list[TypeValue] | None, tail: TypeValue | None
) -> PackValue:
    head = [] if head is None else list(head)
    for ty in head:
        check_type_value(ty)
    if tail is not None:
        check_type_value(tail)
    return PackValue(head, tail)
