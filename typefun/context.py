"""Everything a reduction needs to know about its surroundings."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from typing_extensions import Never, Protocol

from typefun.config import DEFAULT_CONFIG, ReductionConfig
from typefun.errors import InternalCompilerError
from typefun.location import NO_LOCATION, Location
from typefun.logging import get_logger
from typefun.normalize import Normalizer, NormalizerSharedState
from typefun.types import BuiltinTypes, TypeArena, TypeFun, TypeId, TypePackId

if TYPE_CHECKING:
    from typefun.runtime import TypeFunctionRuntime


_logger = get_logger(__name__)


class InternalErrorReporter:
    def __init__(self, module_name: str | None = None) -> None:
        self.module_name = module_name

    def ice(self, message: str) -> Never:
        _logger.error('internal compiler error: {}', message)
        raise InternalCompilerError(message, self.module_name)


class CancellationToken:
    """Lets another thread ask a running check to stop."""

    def __init__(self) -> None:
        self._requested = threading.Event()

    def cancel(self) -> None:
        self._requested.set()

    def requested(self) -> bool:
        return self._requested.is_set()


@dataclass
class TypeCheckLimits:
    # A time.monotonic() deadline.
    finish_time: float | None = None
    cancellation_token: CancellationToken | None = None
    instantiation_limit: int | None = None

    @classmethod
    def with_timeout(cls, seconds: float) -> TypeCheckLimits:
        return cls(finish_time=time.monotonic() + seconds)

    def deadline_passed(self) -> bool:
        return self.finish_time is not None and time.monotonic() > self.finish_time

    def cancelled(self) -> bool:
        return (
            self.cancellation_token is not None
            and self.cancellation_token.requested()
        )


class Scope:
    def __init__(
        self, parent: Scope | None = None, location: Location = NO_LOCATION
    ) -> None:
        self.parent = parent
        self.location = location
        self.type_aliases: dict[str, TypeFun] = {}

    def lookup_type(self, name: str) -> TypeFun | None:
        scope: Scope | None = self
        while scope is not None:
            if name in scope.type_aliases:
                return scope.type_aliases[name]
            scope = scope.parent
        return None


@dataclass(eq=False)
class ReduceConstraint:
    """Asks the solver to reduce `ty` again later."""

    ty: TypeId | TypePackId


@dataclass(eq=False)
class Constraint:
    scope: Scope
    location: Location
    kind: ReduceConstraint


class ConstraintSolver(Protocol):
    def has_unresolved_constraints(self, ty: TypeId) -> bool: ...

    def push_constraint(
        self, scope: Scope, location: Location, constraint: ReduceConstraint
    ) -> Constraint: ...

    def inherit_blocks(self, source: Constraint, added: Constraint) -> None: ...


@dataclass(eq=False)
class TypeFunctionContext:
    arena: TypeArena
    builtins: BuiltinTypes
    scope: Scope
    normalizer: Normalizer
    runtime: TypeFunctionRuntime
    ice: InternalErrorReporter
    limits: TypeCheckLimits
    config: ReductionConfig = DEFAULT_CONFIG
    solver: ConstraintSolver | None = None
    # The constraint being solved when this context was made, if any.
    constraint: Constraint | None = None
    # The user function being reduced right now.
    user_func_name: str | None = None

    @classmethod
    def create(
        cls,
        arena: TypeArena | None = None,
        builtins: BuiltinTypes | None = None,
        scope: Scope | None = None,
        config: ReductionConfig = DEFAULT_CONFIG,
        limits: TypeCheckLimits | None = None,
        solver: ConstraintSolver | None = None,
        constraint: Constraint | None = None,
        module_name: str | None = None,
        shared_state: NormalizerSharedState | None = None,
        allow_evaluation: bool = True,
    ) -> TypeFunctionContext:
        """Build a context with the reference collaborators."""
        from typefun.runtime import TypeFunctionRuntime

        arena = TypeArena(module_name or 'module') if arena is None else arena
        builtins = BuiltinTypes() if builtins is None else builtins
        limits = TypeCheckLimits() if limits is None else limits
        ice = InternalErrorReporter(module_name)
        return cls(
            arena=arena,
            builtins=builtins,
            scope=Scope() if scope is None else scope,
            normalizer=Normalizer(
                arena, builtins, shared_state, config.normalization_limit
            ),
            runtime=TypeFunctionRuntime(ice, limits, allow_evaluation),
            ice=ice,
            limits=limits,
            config=config,
            solver=solver,
            constraint=constraint,
        )

    def push_constraint(self, reduce: ReduceConstraint) -> Constraint:
        if self.solver is None:
            self.ice.ice('pushing a constraint requires a constraint solver')
        location = (
            NO_LOCATION if self.constraint is None else self.constraint.location
        )
        added = self.solver.push_constraint(self.scope, location, reduce)
        # Whatever waits on the current constraint must wait on the new one.
        if self.constraint is not None:
            self.solver.inherit_blocks(self.constraint, added)
        return added
