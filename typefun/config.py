"""Engine configuration.

Every tunable of the reduction engine is a field here. A configuration is
built once and handed to the engine; nothing reads process-wide flags."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Mapping

from typing_extensions import Self

DEFAULT_MAXIMUM_STEPS = 1_000_000
DEFAULT_CARTESIAN_PRODUCT_LIMIT = 5_000
DEFAULT_GUESSER_DEPTH = -1
DEFAULT_RECURSION_LIMIT = 150
DEFAULT_NORMALIZATION_LIMIT = 10_000


@dataclass(frozen=True, slots=True)
class ReductionConfig:
    """Limits and switches for one reduction engine."""

    # Scheduler steps before a run gives up with a "too complex" error.
    maximum_steps: int = DEFAULT_MAXIMUM_STEPS
    # Largest union-distribution cartesian product a builtin will build.
    cartesian_product_limit: int = DEFAULT_CARTESIAN_PRODUCT_LIMIT
    # Instances nested deeper than this are guessed; negative disables it.
    guesser_depth: int = DEFAULT_GUESSER_DEPTH
    # Depth ceiling for the graph traversals.
    recursion_limit: int = DEFAULT_RECURSION_LIMIT
    # Node budget for one normalization.
    normalization_limit: int = DEFAULT_NORMALIZATION_LIMIT
    # Log every scheduler transition at DEBUG level.
    log_type_functions: bool = False

    def __post_init__(self) -> None:
        for field in (
            'maximum_steps',
            'cartesian_product_limit',
            'recursion_limit',
            'normalization_limit',
        ):
            if getattr(self, field) <= 0:
                raise ValueError(
                    f'{field} must be positive, got {getattr(self, field)}'
                )

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> Self:
        known = {field.name for field in dataclasses.fields(cls)}
        unknown = set(options) - known
        if unknown:
            raise ValueError(
                f'unknown reduction options: {", ".join(sorted(unknown))}'
            )
        return cls(**options)

    def replace(self, **changes: Any) -> Self:
        return dataclasses.replace(self, **changes)


DEFAULT_CONFIG = ReductionConfig()

__all__ = ['ReductionConfig', 'DEFAULT_CONFIG']
