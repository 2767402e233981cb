"""Normal forms of types.

A normalized type splits a type into one component per kind of value
(nil, booleans, numbers, strings, tables, functions, ...). Set operations on
types become component-wise operations, which is what inhabitation checks
and the builtin type functions need.
"""

from __future__ import annotations

import copy
import enum
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

from typefun.config import DEFAULT_NORMALIZATION_LIMIT
from typefun.orderedset import InsertionOrderedSet
from typefun.simplify import TypeSimplifier
from typefun.types import (
    AnyType,
    BlockedType,
    BuiltinTypes,
    ErrorType,
    ExternType,
    FreeType,
    FunctionType,
    GenericType,
    IntersectionType,
    MetatableType,
    NegationType,
    NeverType,
    NoRefineType,
    PendingExpansionType,
    PrimitiveKind,
    PrimitiveType,
    SingletonType,
    TableType,
    TypeArena,
    TypeFunctionInstanceType,
    TypeId,
    UnionType,
    UnknownType,
    extern_is_subclass,
    follow,
    make_intersection,
    make_union,
)


class NormalizationResult(enum.Enum):
    TRUE = 'true'
    FALSE = 'false'
    HIT_LIMITS = 'hit limits'


@dataclass
class NormalizerSharedState:
    """State shared by everything working on one type-checking session."""

    # Set while a reduction run is in progress on this session.
    reentrant_type_reduction: bool = False


@contextmanager
def reentrancy(state: NormalizerSharedState, value: bool) -> Iterator[None]:
    previous = state.reentrant_type_reduction
    state.reentrant_type_reduction = value
    try:
        yield
    finally:
        state.reentrant_type_reduction = previous


@dataclass
class NormalizedStringType:
    """Either exactly `singletons`, or every string except `singletons`."""

    is_cofinite: bool = False
    singletons: dict[str, TypeId] = field(default_factory=dict)

    @property
    def is_never(self) -> bool:
        return not self.is_cofinite and not self.singletons

    @property
    def is_string(self) -> bool:
        return self.is_cofinite and not self.singletons

    def union(self, other: NormalizedStringType) -> NormalizedStringType:
        if not self.is_cofinite and not other.is_cofinite:
            return NormalizedStringType(
                False, {**self.singletons, **other.singletons}
            )
        if self.is_cofinite and other.is_cofinite:
            return NormalizedStringType(
                True,
                {
                    k: v
                    for k, v in self.singletons.items()
                    if k in other.singletons
                },
            )
        cofinite, finite = (self, other) if self.is_cofinite else (other, self)
        return NormalizedStringType(
            True,
            {
                k: v
                for k, v in cofinite.singletons.items()
                if k not in finite.singletons
            },
        )

    def intersect(self, other: NormalizedStringType) -> NormalizedStringType:
        if not self.is_cofinite and not other.is_cofinite:
            return NormalizedStringType(
                False,
                {
                    k: v
                    for k, v in self.singletons.items()
                    if k in other.singletons
                },
            )
        if self.is_cofinite and other.is_cofinite:
            return NormalizedStringType(
                True, {**self.singletons, **other.singletons}
            )
        cofinite, finite = (self, other) if self.is_cofinite else (other, self)
        return NormalizedStringType(
            False,
            {
                k: v
                for k, v in finite.singletons.items()
                if k not in cofinite.singletons
            },
        )

    def negate(self) -> NormalizedStringType:
        return NormalizedStringType(not self.is_cofinite, dict(self.singletons))


class NormalizedType:
    def __init__(self, builtins: BuiltinTypes) -> None:
        self.builtins = builtins
        # never, unknown or any
        self.tops = builtins.never
        # never, true, false or boolean
        self.booleans = builtins.never
        self.extern_types = InsertionOrderedSet[TypeId]()
        self.errors = builtins.never
        self.nils = builtins.never
        self.numbers = builtins.never
        self.strings = NormalizedStringType()
        self.threads = builtins.never
        self.buffers = builtins.never
        self.tables = InsertionOrderedSet[TypeId]()
        self.functions = InsertionOrderedSet[TypeId]()
        # Opaque types: free, generic, blocked and instance types.
        self.tyvars = InsertionOrderedSet[TypeId]()

    def copy(self) -> NormalizedType:
        result = copy.copy(self)
        result.extern_types = InsertionOrderedSet(self.extern_types)
        result.strings = NormalizedStringType(
            self.strings.is_cofinite, dict(self.strings.singletons)
        )
        result.tables = InsertionOrderedSet(self.tables)
        result.functions = InsertionOrderedSet(self.functions)
        result.tyvars = InsertionOrderedSet(self.tyvars)
        return result

    def should_suppress_errors(self) -> bool:
        return self.has_errors() or self.tops is self.builtins.any

    def has_tops(self) -> bool:
        return self.tops is not self.builtins.never

    def has_booleans(self) -> bool:
        return self.booleans is not self.builtins.never

    def has_extern_types(self) -> bool:
        return bool(self.extern_types)

    def has_errors(self) -> bool:
        return self.errors is not self.builtins.never

    def has_nils(self) -> bool:
        return self.nils is not self.builtins.never

    def has_numbers(self) -> bool:
        return self.numbers is not self.builtins.never

    def has_strings(self) -> bool:
        return not self.strings.is_never

    def has_threads(self) -> bool:
        return self.threads is not self.builtins.never

    def has_buffers(self) -> bool:
        return self.buffers is not self.builtins.never

    def has_tables(self) -> bool:
        return bool(self.tables)

    def has_functions(self) -> bool:
        return bool(self.functions)

    def has_tyvars(self) -> bool:
        return bool(self.tyvars)

    def has_top_table(self) -> bool:
        return self.builtins.table in self.tables

    def has_top_function(self) -> bool:
        return self.builtins.function in self.functions

    def is_unknown(self) -> bool:
        return self.tops is self.builtins.unknown

    def _components_except(self, *names: str) -> list[bool]:
        checks = {
            'tops': self.has_tops(),
            'booleans': self.has_booleans(),
            'extern_types': self.has_extern_types(),
            'errors': self.has_errors(),
            'nils': self.has_nils(),
            'numbers': self.has_numbers(),
            'strings': self.has_strings(),
            'threads': self.has_threads(),
            'buffers': self.has_buffers(),
            'tables': self.has_tables(),
            'functions': self.has_functions(),
            'tyvars': self.has_tyvars(),
        }
        return [present for name, present in checks.items() if name not in names]

    def is_exactly_number(self) -> bool:
        return self.has_numbers() and not any(
            self._components_except('numbers')
        )

    def is_subtype_of_string(self) -> bool:
        return self.has_strings() and not any(
            self._components_except('strings')
        )

    def is_subtype_of_booleans(self) -> bool:
        return self.has_booleans() and not any(
            self._components_except('booleans')
        )

    def has_only_tables(self) -> bool:
        return self.has_tables() and not any(self._components_except('tables'))

    def has_only_extern_types(self) -> bool:
        return self.has_extern_types() and not any(
            self._components_except('extern_types')
        )

    def is_empty(self) -> bool:
        return not any(self._components_except())

    def __repr__(self) -> str:
        return f'NormalizedType({_describe(self)})'


def _describe(norm: NormalizedType) -> str:
    parts = []
    for name in (
        'tops',
        'booleans',
        'errors',
        'nils',
        'numbers',
        'threads',
        'buffers',
    ):
        ty = getattr(norm, name)
        if ty is not norm.builtins.never:
            parts.append(str(ty))
    if norm.has_strings():
        parts.append(repr(norm.strings))
    for group in (norm.extern_types, norm.tables, norm.functions, norm.tyvars):
        parts.extend(str(ty) for ty in group)
    return ' | '.join(parts) or 'never'


class _HitLimits(Exception):
    pass


class _Unrepresentable(Exception):
    pass


class Normalizer:
    """Computes normal forms within a node budget.

    `normalize` returns None instead of a normal form when the budget runs
    out or when the type cannot be represented (negations of opaque types).
    """

    def __init__(
        self,
        arena: TypeArena,
        builtins: BuiltinTypes,
        shared_state: NormalizerSharedState | None = None,
        limit: int = DEFAULT_NORMALIZATION_LIMIT,
    ) -> None:
        self.arena = arena
        self.builtins = builtins
        self.shared_state = (
            NormalizerSharedState() if shared_state is None else shared_state
        )
        self.limit = limit
        self._budget = limit
        self._active: set[TypeId] = set()

    def normalize(self, ty: TypeId) -> NormalizedType | None:
        self._budget = self.limit
        self._active = set()
        try:
            return self._normalize(ty)
        except (_HitLimits, _Unrepresentable, RecursionError):
            return None

    def _normalize(self, ty: TypeId) -> NormalizedType:
        ty = follow(ty)
        self._budget -= 1
        if self._budget < 0:
            raise _HitLimits
        result = NormalizedType(self.builtins)
        # A set type that contains itself contributes nothing new.
        if ty in self._active:
            return result
        self._active.add(ty)
        try:
            match ty.ty:
                case PrimitiveType(kind=kind):
                    self._add_primitive(result, ty, kind)
                case SingletonType(value=bool() as value):
                    result.booleans = (
                        self.builtins.true_ if value else self.builtins.false_
                    )
                case SingletonType(value=value):
                    result.strings = NormalizedStringType(False, {value: ty})
                case AnyType():
                    result.tops = self.builtins.any
                case UnknownType() | NoRefineType():
                    result.tops = self.builtins.unknown
                case NeverType():
                    pass
                case ErrorType():
                    result.errors = self.builtins.error
                case UnionType(options=options):
                    for option in options:
                        result = self._union(result, self._normalize(option))
                case IntersectionType(parts=parts):
                    result.tops = self.builtins.unknown
                    for part in parts:
                        result = self._intersect(
                            result, self._normalize(part)
                        )
                case NegationType(ty=negated):
                    result = self._negate(self._normalize(negated))
                case TableType() | MetatableType():
                    result.tables.add(ty)
                case FunctionType():
                    result.functions.add(ty)
                case ExternType():
                    result.extern_types.add(ty)
                case (
                    FreeType()
                    | GenericType()
                    | BlockedType()
                    | PendingExpansionType()
                    | TypeFunctionInstanceType()
                ):
                    result.tyvars.add(ty)
        finally:
            self._active.discard(ty)
        return result

    def _add_primitive(
        self, result: NormalizedType, ty: TypeId, kind: PrimitiveKind
    ) -> None:
        builtins = self.builtins
        match kind:
            case PrimitiveKind.NIL:
                result.nils = builtins.nil
            case PrimitiveKind.BOOLEAN:
                result.booleans = builtins.boolean
            case PrimitiveKind.NUMBER:
                result.numbers = builtins.number
            case PrimitiveKind.STRING:
                result.strings = NormalizedStringType(True)
            case PrimitiveKind.THREAD:
                result.threads = builtins.thread
            case PrimitiveKind.BUFFER:
                result.buffers = builtins.buffer
            case PrimitiveKind.FUNCTION:
                result.functions.add(builtins.function)
            case PrimitiveKind.TABLE:
                result.tables.add(builtins.table)

    def _union(
        self, left: NormalizedType, right: NormalizedType
    ) -> NormalizedType:
        builtins = self.builtins
        if builtins.any in (left.tops, right.tops) or (
            left.is_unknown() or right.is_unknown()
        ):
            result = NormalizedType(builtins)
            result.tops = (
                builtins.any
                if builtins.any in (left.tops, right.tops)
                else builtins.unknown
            )
            if left.has_errors() or right.has_errors():
                result.errors = builtins.error
            return result

        result = left.copy()
        for name in ('errors', 'nils', 'numbers', 'threads', 'buffers'):
            if getattr(right, name) is not builtins.never:
                setattr(result, name, getattr(right, name))
        result.booleans = self._union_booleans(left.booleans, right.booleans)
        result.strings = left.strings.union(right.strings)
        if left.has_top_function() or right.has_top_function():
            result.functions = InsertionOrderedSet([builtins.function])
        else:
            result.functions = left.functions | right.functions
        if left.has_top_table() or right.has_top_table():
            result.tables = InsertionOrderedSet([builtins.table])
        else:
            result.tables = left.tables | right.tables
        result.extern_types = self._union_externs(
            left.extern_types, right.extern_types
        )
        result.tyvars = left.tyvars | right.tyvars
        return result

    def _union_booleans(self, left: TypeId, right: TypeId) -> TypeId:
        builtins = self.builtins
        if left is builtins.never or left is right:
            return right
        if right is builtins.never:
            return left
        return builtins.boolean

    def _union_externs(
        self, left: InsertionOrderedSet[TypeId], right: InsertionOrderedSet[TypeId]
    ) -> InsertionOrderedSet[TypeId]:
        result = InsertionOrderedSet[TypeId]()
        for extern in left | right:
            if any(
                other is not extern and extern_is_subclass(extern, other)
                for other in left | right
            ):
                continue
            result.add(extern)
        return result

    def _intersect(
        self, left: NormalizedType, right: NormalizedType
    ) -> NormalizedType:
        builtins = self.builtins
        if left.has_tops() or right.has_tops():
            if left.has_tops() and right.has_tops():
                result = NormalizedType(builtins)
                result.tops = (
                    builtins.any
                    if left.tops is builtins.any and right.tops is builtins.any
                    else builtins.unknown
                )
                if left.has_errors() and right.has_errors():
                    result.errors = builtins.error
                return result
            other = right if left.has_tops() else left
            return other.copy()

        result = NormalizedType(builtins)
        for name in ('errors', 'nils', 'numbers', 'threads', 'buffers'):
            if getattr(left, name) is getattr(right, name):
                setattr(result, name, getattr(left, name))
        result.booleans = self._intersect_booleans(
            left.booleans, right.booleans
        )
        result.strings = left.strings.intersect(right.strings)
        result.functions = self._intersect_group(
            left.functions, right.functions, builtins.function
        )
        result.tables = self._intersect_group(
            left.tables, right.tables, builtins.table
        )
        for extern in left.extern_types:
            for other in right.extern_types:
                if extern_is_subclass(extern, other):
                    result.extern_types.add(extern)
                elif extern_is_subclass(other, extern):
                    result.extern_types.add(other)
        self._intersect_tyvars(result, left, right)
        self._intersect_tyvars(result, right, left)
        return result

    def _intersect_booleans(self, left: TypeId, right: TypeId) -> TypeId:
        builtins = self.builtins
        if left is builtins.boolean:
            return right
        if right is builtins.boolean or left is right:
            return left
        return builtins.never

    def _intersect_group(
        self,
        left: InsertionOrderedSet[TypeId],
        right: InsertionOrderedSet[TypeId],
        top: TypeId,
    ) -> InsertionOrderedSet[TypeId]:
        if top in left:
            return InsertionOrderedSet(right)
        if top in right:
            return InsertionOrderedSet(left)
        result = InsertionOrderedSet[TypeId]()
        simplifier = TypeSimplifier(self.builtins, self.arena)
        for ty in left:
            for other in right:
                intersection = simplifier.intersect(ty, other)
                if not isinstance(follow(intersection).ty, NeverType):
                    result.add(intersection)
        return result

    def _intersect_tyvars(
        self,
        result: NormalizedType,
        source: NormalizedType,
        other: NormalizedType,
    ) -> None:
        concrete = other.copy()
        concrete.tyvars = InsertionOrderedSet()
        for tyvar in source.tyvars:
            if tyvar in other.tyvars:
                result.tyvars.add(tyvar)
            elif not concrete.is_empty():
                result.tyvars.add(
                    make_intersection(
                        self.arena,
                        self.builtins,
                        [tyvar, self.type_from_normal(concrete)],
                    )
                )

    def _negate(self, norm: NormalizedType) -> NormalizedType:
        builtins = self.builtins
        if norm.has_tyvars():
            raise _Unrepresentable
        result = NormalizedType(builtins)
        if norm.has_tops():
            return result

        def complement(ty: TypeId, top: TypeId) -> TypeId:
            return top if ty is builtins.never else builtins.never

        result.nils = complement(norm.nils, builtins.nil)
        result.numbers = complement(norm.numbers, builtins.number)
        result.threads = complement(norm.threads, builtins.thread)
        result.buffers = complement(norm.buffers, builtins.buffer)
        result.booleans = {
            builtins.never: builtins.boolean,
            builtins.boolean: builtins.never,
            builtins.true_: builtins.false_,
            builtins.false_: builtins.true_,
        }[norm.booleans]
        result.strings = norm.strings.negate()
        if not norm.has_top_function():
            result.functions.add(builtins.function)
        if not norm.has_top_table():
            result.tables.add(builtins.table)
        return result

    def is_inhabited(
        self, norm: NormalizedType | TypeId | None
    ) -> NormalizationResult:
        if isinstance(norm, TypeId):
            norm = self.normalize(norm)
        if norm is None:
            return NormalizationResult.HIT_LIMITS
        if norm.is_empty():
            return NormalizationResult.FALSE
        return NormalizationResult.TRUE

    def is_intersection_inhabited(
        self, left: TypeId, right: TypeId
    ) -> NormalizationResult:
        lnorm = self.normalize(left)
        rnorm = self.normalize(right)
        if lnorm is None or rnorm is None:
            return NormalizationResult.HIT_LIMITS
        return self.is_inhabited(self._intersect(lnorm, rnorm))

    def type_from_normal(self, norm: NormalizedType) -> TypeId:
        builtins = self.builtins
        if norm.has_tops():
            if norm.has_errors() and norm.tops is not builtins.any:
                return make_union(self.arena, builtins, [norm.tops, norm.errors])
            return norm.tops
        options: list[TypeId] = []
        for name in ('errors', 'nils', 'booleans', 'numbers'):
            ty = getattr(norm, name)
            if ty is not builtins.never:
                options.append(ty)
        strings = norm.strings
        if strings.is_string:
            options.append(builtins.string)
        elif strings.is_cofinite:
            excluded = make_union(
                self.arena, builtins, list(strings.singletons.values())
            )
            options.append(
                make_intersection(
                    self.arena,
                    builtins,
                    [builtins.string, self.arena.add_type(NegationType(excluded))],
                )
            )
        else:
            options.extend(strings.singletons.values())
        for name in ('threads', 'buffers'):
            ty = getattr(norm, name)
            if ty is not builtins.never:
                options.append(ty)
        options.extend(norm.functions)
        options.extend(norm.tables)
        options.extend(norm.extern_types)
        options.extend(norm.tyvars)
        return make_union(self.arena, builtins, options)
