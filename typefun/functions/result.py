from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterable

from typefun.errors import StaticAnalysisError
from typefun.types import TypeId, TypePackId


class Reduction(enum.Enum):
    # Either reduced, or blocked on the listed types and packs.
    MAYBE_OK = 'maybe ok'
    # Can never reduce, but that is not an error.
    IRREDUCIBLE = 'irreducible'
    # Can never reduce, and the instance is an error.
    ERRONEOUS = 'erroneous'


@dataclass
class TypeFunctionReductionResult[T: (TypeId, TypePackId)]:
    result: T | None
    reduction_status: Reduction = Reduction.MAYBE_OK
    blocked_types: list[TypeId] = field(default_factory=list)
    blocked_packs: list[TypePackId] = field(default_factory=list)
    error: StaticAnalysisError | str | None = None
    messages: list[str] = field(default_factory=list)

    @classmethod
    def reduced(cls, result: T) -> TypeFunctionReductionResult[T]:
        return cls(result)

    @classmethod
    def blocked_on(
        cls, types: Iterable[TypeId] = (), packs: Iterable[TypePackId] = ()
    ) -> TypeFunctionReductionResult[T]:
        return cls(None, Reduction.MAYBE_OK, list(types), list(packs))

    @classmethod
    def erroneous(
        cls,
        error: StaticAnalysisError | str | None = None,
        messages: Iterable[str] = (),
    ) -> TypeFunctionReductionResult[T]:
        return cls(None, Reduction.ERRONEOUS, error=error, messages=list(messages))

    @classmethod
    def irreducible(cls) -> TypeFunctionReductionResult[T]:
        return cls(None, Reduction.IRREDUCIBLE)

    @property
    def is_blocked(self) -> bool:
        return bool(self.blocked_types or self.blocked_packs)


type TypeResult = TypeFunctionReductionResult[TypeId]
