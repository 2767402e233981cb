from typing import (
    AbstractSet,
    Generic,
    Iterable,
    Iterator,
    MutableSet,
    TypeVar,
)

_T = TypeVar('_T')


class InsertionOrderedSet(MutableSet[_T], Generic[_T]):
    """A set that iterates over its elements in the order they were added.

    Adding an element that is already present does not move it."""

    def __init__(self, elements: Iterable[_T] = ()) -> None:
        super().__init__()
        self._data: dict[_T, None] = dict.fromkeys(elements)

    def add(self, value: _T) -> None:
        self._data[value] = None

    def discard(self, value: _T) -> None:
        self._data.pop(value, None)

    def __sub__(self, other: object) -> 'InsertionOrderedSet[_T]':
        if not isinstance(other, AbstractSet):
            return NotImplemented
        return InsertionOrderedSet(x for x in self if x not in other)

    def __or__(self, other: object) -> 'InsertionOrderedSet[_T]':
        if not isinstance(other, AbstractSet):
            return NotImplemented
        result = InsertionOrderedSet[_T](self)
        for el in other:
            result.add(el)
        return result

    def __contains__(self, element: object) -> bool:
        return element in self._data

    def __iter__(self) -> Iterator[_T]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f'InsertionOrderedSet({list(self._data)!r})'
