"""The reduction scheduler.

A run collects the instances under an entry node, innermost first, and
steps through them until the queue drains. Each step either defers the
instance behind an argument that is not ready yet, gives up on it, or calls
its reducer and applies the result by binding the instance in place. The
caller learns which instances were reduced, which block on what, and which
are erroneous.
"""

from __future__ import annotations

import enum
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable

from typefun.collector import TooDeep, collect_instances
from typefun.context import TypeFunctionContext
from typefun.errors import (
    CodeTooComplex,
    InternalError,
    StaticAnalysisError,
    UninhabitedTypeFunction,
    UninhabitedTypePackFunction,
    UserDefinedTypeFunctionError,
    format_foreign_arena_error,
)
from typefun.functions import reduce_instance
from typefun.functions.result import Reduction, TypeFunctionReductionResult
from typefun.guesser import TypeFunctionReductionGuesser
from typefun.location import Location
from typefun.logging import get_logger
from typefun.normalize import reentrancy
from typefun.orderedset import InsertionOrderedSet
from typefun.scans import has_unscoped_generics, is_pending
from typefun.types import (
    GenericType,
    GenericTypePack,
    IntersectionType,
    TypeFunctionInstanceState,
    TypeFunctionInstanceType,
    TypeFunctionInstanceTypePack,
    TypeFunctionKind,
    TypeId,
    TypePackId,
    follow,
    get,
    get_pack,
)

_logger = get_logger(__name__)


@dataclass
class FunctionGraphReductionResult:
    reduced_types: InsertionOrderedSet[TypeId] = field(
        default_factory=InsertionOrderedSet
    )
    reduced_packs: InsertionOrderedSet[TypePackId] = field(
        default_factory=InsertionOrderedSet
    )
    # Instances that will not become reducible, whatever the solver does.
    irreducible_types: InsertionOrderedSet[TypeId] = field(
        default_factory=InsertionOrderedSet
    )
    errors: list[StaticAnalysisError] = field(default_factory=list)
    messages: list[StaticAnalysisError] = field(default_factory=list)
    blocked_types: InsertionOrderedSet[TypeId] = field(
        default_factory=InsertionOrderedSet
    )
    blocked_packs: InsertionOrderedSet[TypePackId] = field(
        default_factory=InsertionOrderedSet
    )


class SkipTestResult(enum.Enum):
    # On a cycle of instances; cannot reduce, but may be guessed.
    CYCLIC = 'cyclic'
    # Not this run; the solver may make it reducible later.
    IRREDUCIBLE = 'irreducible'
    # Has no valid reduction, e.g. add<number, string>.
    STUCK = 'stuck'
    # Some functions can operate on generics.
    GENERIC = 'generic'
    # Maybe later in this run.
    DEFER = 'defer'
    OKAY = 'okay'


class TypeFunctionReducer:
    def __init__(
        self,
        queued_types: deque[TypeId],
        queued_packs: deque[TypePackId],
        should_guess: set[TypeId | TypePackId],
        cyclic: Iterable[TypeId],
        location: Location,
        ctx: TypeFunctionContext,
        force: bool = False,
    ) -> None:
        self.ctx = ctx
        self.queued_types = queued_types
        self.queued_packs = queued_packs
        self.should_guess = should_guess
        self.cyclic_type_functions = InsertionOrderedSet(cyclic)
        self.irreducible: set[TypeId | TypePackId] = set()
        self.result = FunctionGraphReductionResult()
        self.force = force
        self.location = location

    def _log(self, format_string: str, *args: object) -> None:
        if self.ctx.config.log_type_functions:
            _logger.debug(format_string, *args)

    def test_for_skippability(self, ty: TypeId) -> SkipTestResult:
        """Classify an argument, looking through intersections
        breadth-first."""
        queue = deque([follow(ty)])
        seen: set[TypeId] = set()
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            match current.ty:
                case TypeFunctionInstanceType() as instance:
                    if instance.state is TypeFunctionInstanceState.STUCK:
                        return SkipTestResult.STUCK
                    if instance.state is TypeFunctionInstanceState.SOLVED:
                        return SkipTestResult.GENERIC
                    if current in self.cyclic_type_functions:
                        return SkipTestResult.CYCLIC
                    if current not in self.irreducible:
                        return SkipTestResult.DEFER
                    return SkipTestResult.IRREDUCIBLE
                case GenericType():
                    return SkipTestResult.GENERIC
                case IntersectionType(parts=parts):
                    queue.extend(follow(part) for part in parts)
            seen.add(current)
        return SkipTestResult.OKAY

    def test_pack_for_skippability(self, tp: TypePackId) -> SkipTestResult:
        tp = follow(tp)
        match tp.ty:
            case TypeFunctionInstanceTypePack():
                if tp not in self.irreducible:
                    return SkipTestResult.DEFER
                return SkipTestResult.IRREDUCIBLE
            case GenericTypePack():
                return SkipTestResult.GENERIC
        return SkipTestResult.OKAY

    def _get_state(self, node: TypeId | TypePackId) -> TypeFunctionInstanceState:
        instance = get(node, TypeFunctionInstanceType) if isinstance(
            node, TypeId
        ) else None
        if instance is None:
            # Pack instances carry no state.
            return TypeFunctionInstanceState.UNSOLVED
        return instance.state

    def _set_state(
        self, node: TypeId | TypePackId, state: TypeFunctionInstanceState
    ) -> None:
        if not isinstance(node, TypeId) or not self.ctx.arena.owns(node):
            return
        instance = get(node, TypeFunctionInstanceType)
        assert instance is not None
        if type(instance).state.is_set(instance):
            return
        instance.state = state

    def _queue(self, subject: TypeId | TypePackId) -> None:
        if isinstance(subject, TypeId):
            self.queued_types.append(subject)
        else:
            self.queued_packs.append(subject)

    def test_parameters(
        self,
        subject: TypeId | TypePackId,
        instance: TypeFunctionInstanceType | TypeFunctionInstanceTypePack,
    ) -> bool:
        """Whether every argument is ready; if not, deal with the subject."""
        can_reduce_generics = instance.function.can_reduce_generics
        for argument in instance.type_arguments:
            skip = self.test_for_skippability(argument)
            if skip is SkipTestResult.STUCK:
                self._log('{} is stuck!', subject)
                self.irreducible.add(subject)
                self._set_state(subject, TypeFunctionInstanceState.STUCK)
                return False
            if skip is SkipTestResult.IRREDUCIBLE or (
                skip is SkipTestResult.GENERIC and not can_reduce_generics
            ):
                if skip is SkipTestResult.GENERIC:
                    self._log(
                        '{} is solved due to a dependency on {}',
                        subject,
                        argument,
                    )
                    self._set_state(subject, TypeFunctionInstanceState.SOLVED)
                else:
                    self._log(
                        '{} is irreducible due to a dependency on {}',
                        subject,
                        argument,
                    )
                self.irreducible.add(subject)
                return False
            if skip is SkipTestResult.DEFER:
                self._log(
                    'Deferring {} until {} is solved',
                    subject,
                    argument,
                )
                self._queue(subject)
                return False

        for pack_argument in instance.pack_arguments:
            skip = self.test_pack_for_skippability(pack_argument)
            if skip is SkipTestResult.IRREDUCIBLE or (
                skip is SkipTestResult.GENERIC and not can_reduce_generics
            ):
                self._log(
                    '{} is irreducible due to a dependency on {}',
                    subject,
                    pack_argument,
                )
                self.irreducible.add(subject)
                return False
            if skip is SkipTestResult.DEFER:
                self._log(
                    'Deferring {} until {} is solved',
                    subject,
                    pack_argument,
                )
                self._queue(subject)
                return False
        return True

    def replace(
        self, subject: TypeId | TypePackId, replacement: TypeId | TypePackId
    ) -> None:
        if not self.ctx.arena.owns(subject):
            self.result.errors.append(
                InternalError(format_foreign_arena_error(subject), self.location)
            )
            return
        # Binding an instance to itself would form a bound cycle.
        if follow(replacement) is subject:
            if isinstance(subject, TypeId):
                replacement = self.ctx.builtins.never
            else:
                replacement = self.ctx.builtins.never_pack
        self._log('{} => {}', subject, replacement)
        if isinstance(subject, TypeId):
            assert isinstance(replacement, TypeId)
            self.ctx.arena.bind_type(subject, replacement)
            self.result.reduced_types.add(subject)
        else:
            assert isinstance(replacement, TypePackId)
            self.ctx.arena.bind_type_pack(subject, replacement)
            self.result.reduced_packs.add(subject)

    def handle_type_function_reduction(
        self,
        subject: TypeId | TypePackId,
        reduction: TypeFunctionReductionResult,
    ) -> None:
        for message in reduction.messages:
            self.result.messages.append(
                UserDefinedTypeFunctionError(message, self.location)
            )

        if reduction.result is not None:
            self.replace(subject, reduction.result)
            return

        self.irreducible.add(subject)
        if reduction.error is not None:
            error = reduction.error
            if not isinstance(error, StaticAnalysisError):
                error = UserDefinedTypeFunctionError(error, self.location)
            error.set_location_if_missing(self.location)
            self.result.errors.append(error)

        if reduction.reduction_status is not Reduction.MAYBE_OK or self.force:
            self._log('{} is uninhabited', subject)
            if self._get_state(subject) is TypeFunctionInstanceState.UNSOLVED:
                if reduction.reduction_status is Reduction.IRREDUCIBLE:
                    self._set_state(subject, TypeFunctionInstanceState.SOLVED)
                else:
                    # Erroneous, or blocked while forcing.
                    self._set_state(subject, TypeFunctionInstanceState.STUCK)
            if isinstance(subject, TypeId):
                self.result.errors.append(
                    UninhabitedTypeFunction(subject, self.location)
                )
            else:
                self.result.errors.append(
                    UninhabitedTypePackFunction(subject, self.location)
                )
            return

        self._log(
            '{} is irreducible; blocked on {} types, {} packs',
            subject,
            len(reduction.blocked_types),
            len(reduction.blocked_packs),
        )
        for blocked in reduction.blocked_types:
            self.result.blocked_types.add(blocked)
        for blocked_pack in reduction.blocked_packs:
            self.result.blocked_packs.add(blocked_pack)

    def done(self) -> bool:
        return not self.queued_types and not self.queued_packs

    def try_guessing(self, subject: TypeId | TypePackId) -> bool:
        if subject not in self.should_guess:
            return False
        self._log('Flagged {} for reduction with guesser.', subject)
        guesser = TypeFunctionReductionGuesser(self.ctx.arena, self.ctx.builtins)
        guessed = guesser.guess(subject)
        if guessed is None:
            self._log(
                'Failed to produce a guess for the result of {}.',
                subject,
            )
            return False
        self._log('Selected {} as the guessed result type.', guessed)
        self.replace(subject, guessed)
        return True

    def step_type(self) -> None:
        subject = follow(self.queued_types.popleft())
        if subject in self.irreducible:
            return
        instance = get(subject, TypeFunctionInstanceType)
        if instance is None:
            return
        self._log(
            'Trying to {}reduce {}',
            'force ' if self.force else '',
            subject,
        )

        if instance.function.kind is TypeFunctionKind.USER:
            if has_unscoped_generics(subject):
                self.irreducible.add(subject)
                # The caller should not wait on this instance.
                self.result.irreducible_types.add(subject)
                self._log('Irreducible due to an unscoped generic type')
                return

        cyclic = self.test_for_skippability(subject) is SkipTestResult.CYCLIC
        if not self.test_parameters(subject, instance) and not cyclic:
            if instance.state in (
                TypeFunctionInstanceState.STUCK,
                TypeFunctionInstanceState.SOLVED,
            ):
                self.try_guessing(subject)
            return

        if self.try_guessing(subject):
            return

        self.ctx.user_func_name = instance.user_func_name
        reduction = reduce_instance(
            instance.function,
            subject,
            instance.type_arguments,
            instance.pack_arguments,
            self.ctx,
        )
        self.handle_type_function_reduction(subject, reduction)

    def step_pack(self) -> None:
        subject = follow(self.queued_packs.popleft())
        if subject in self.irreducible:
            return
        instance = get_pack(subject, TypeFunctionInstanceTypePack)
        if instance is None:
            return
        self._log('Trying to reduce {}', subject)
        if not self.test_parameters(subject, instance):
            return
        if self.try_guessing(subject):
            return

        reduction = reduce_instance(
            instance.function,
            subject,  # type: ignore[arg-type]
            instance.type_arguments,
            instance.pack_arguments,
            self.ctx,
        )
        # Pack functions produce the single type the function computes.
        if reduction.result is not None:
            reduction = TypeFunctionReductionResult(
                self.ctx.arena.add_pack([reduction.result]),
                reduction.reduction_status,
                reduction.blocked_types,
                reduction.blocked_packs,
                reduction.error,
                reduction.messages,
            )
        self.handle_type_function_reduction(subject, reduction)

    def step(self) -> None:
        if self.queued_types:
            self.step_type()
        elif self.queued_packs:
            self.step_pack()


def _reduce_functions_internal(
    collected_types: deque[TypeId],
    collected_packs: deque[TypePackId],
    should_guess: set[TypeId | TypePackId],
    cyclic: Iterable[TypeId],
    location: Location,
    ctx: TypeFunctionContext,
    force: bool,
) -> FunctionGraphReductionResult:
    shared_state = ctx.normalizer.shared_state
    # A run inside a run on the same session (reduction, overload
    # resolution, subtyping, reduction again) would most likely loop.
    if shared_state.reentrant_type_reduction:
        _logger.debug('refusing to start a reentrant reduction run')
        return FunctionGraphReductionResult()

    reducer = TypeFunctionReducer(
        collected_types,
        collected_packs,
        should_guess,
        cyclic,
        location,
        ctx,
        force,
    )
    iteration_count = 0
    with reentrancy(shared_state, True):
        while not reducer.done():
            reducer.step()
            iteration_count += 1
            if iteration_count > ctx.config.maximum_steps:
                reducer.result.errors.append(CodeTooComplex(location))
                break
    return reducer.result


def _reduce(
    entrypoint: TypeId | TypePackId,
    location: Location,
    ctx: TypeFunctionContext,
    force: bool,
) -> FunctionGraphReductionResult:
    collected = collect_instances(
        entrypoint, ctx.config.recursion_limit, ctx.config.guesser_depth
    )
    if isinstance(collected, TooDeep):
        _logger.warning(
            'gave up collecting type function instances under {} past depth {}',
            entrypoint,
            collected.limit,
        )
        return FunctionGraphReductionResult()
    if not collected.types and not collected.packs:
        return FunctionGraphReductionResult()
    return _reduce_functions_internal(
        collected.types,
        collected.packs,
        collected.should_guess,
        collected.cyclic,
        location,
        ctx,
        force,
    )


def reduce_type_functions(
    entrypoint: TypeId,
    location: Location,
    ctx: TypeFunctionContext,
    force: bool = False,
) -> FunctionGraphReductionResult:
    """Reduce every type function instance reachable from `entrypoint`.

    With `force`, instances that can make no progress are given up on (and
    reported uninhabited) instead of being reported as blocked."""
    return _reduce(entrypoint, location, ctx, force)


def reduce_type_pack_functions(
    entrypoint: TypePackId,
    location: Location,
    ctx: TypeFunctionContext,
    force: bool = False,
) -> FunctionGraphReductionResult:
    return _reduce(entrypoint, location, ctx, force)


__all__ = [
    'FunctionGraphReductionResult',
    'SkipTestResult',
    'TypeFunctionReducer',
    'is_pending',
    'reduce_type_functions',
    'reduce_type_pack_functions',
]
