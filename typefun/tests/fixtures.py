"""Builders shared by the test modules."""

from __future__ import annotations

import textwrap
import weakref
from typing import Sequence

from typefun.config import DEFAULT_CONFIG, ReductionConfig
from typefun.context import (
    Constraint,
    ReduceConstraint,
    Scope,
    TypeCheckLimits,
    TypeFunctionContext,
)
from typefun.functions.catalog import builtin_type_functions
from typefun.location import Location
from typefun.reducer import (
    FunctionGraphReductionResult,
    reduce_type_functions,
)
from typefun.types import (
    BlockedType,
    ExternType,
    FreeType,
    FunctionType,
    GenericType,
    IntersectionType,
    MetatableType,
    NegationType,
    Property,
    SingletonType,
    TableIndexer,
    TableType,
    TypeFun,
    TypeFunction,
    TypeFunctionDefinition,
    TypeFunctionInstanceType,
    TypeId,
    TypePackId,
    UnionType,
    UserDefinedFunctionData,
)


class FakeSolver:
    """Records the constraints the engine pushes."""

    def __init__(self, unresolved: Sequence[TypeId] = ()) -> None:
        self.unresolved = set(unresolved)
        self.pushed: list[Constraint] = []
        self.inherited: list[tuple[Constraint, Constraint]] = []

    def has_unresolved_constraints(self, ty: TypeId) -> bool:
        return ty in self.unresolved

    def push_constraint(
        self, scope: Scope, location: Location, constraint: ReduceConstraint
    ) -> Constraint:
        added = Constraint(scope, location, constraint)
        self.pushed.append(added)
        return added

    def inherit_blocks(self, source: Constraint, added: Constraint) -> None:
        self.inherited.append((source, added))


class _Module:
    """Owns user type function definitions, the way a checked module does."""


class Fixture:
    def __init__(
        self,
        config: ReductionConfig = DEFAULT_CONFIG,
        limits: TypeCheckLimits | None = None,
        solver: FakeSolver | None = None,
        allow_evaluation: bool = True,
    ) -> None:
        self.ctx = TypeFunctionContext.create(
            config=config,
            limits=limits,
            solver=solver,
            module_name='test',
            allow_evaluation=allow_evaluation,
        )
        self.arena = self.ctx.arena
        self.builtins = self.ctx.builtins
        self.functions = builtin_type_functions()
        self.module = _Module()

    def instance(self, function: TypeFunction, *args: TypeId) -> TypeId:
        return self.arena.add_type(TypeFunctionInstanceType(function, args))

    def self_referential(
        self, function: TypeFunction, *args: TypeId | None
    ) -> TypeId:
        """An instance that takes itself wherever `args` holds None."""
        ty = self.arena.add_type(BlockedType())
        self.arena.emplace_type(
            ty,
            TypeFunctionInstanceType(
                function, [ty if arg is None else arg for arg in args]
            ),
        )
        return ty

    def singleton(self, value: bool | str) -> TypeId:
        if value is True:
            return self.builtins.true_
        if value is False:
            return self.builtins.false_
        return self.arena.add_type(SingletonType(value))

    def union(self, *options: TypeId) -> TypeId:
        return self.arena.add_type(UnionType(list(options)))

    def intersection(self, *parts: TypeId) -> TypeId:
        return self.arena.add_type(IntersectionType(list(parts)))

    def negation(self, ty: TypeId) -> TypeId:
        return self.arena.add_type(NegationType(ty))

    def optional(self, ty: TypeId) -> TypeId:
        return self.union(ty, self.builtins.nil)

    def generic(self, name: str = 'T') -> TypeId:
        return self.arena.add_type(GenericType(name))

    def blocked(self) -> TypeId:
        return self.arena.add_type(BlockedType())

    def free(self) -> TypeId:
        return self.arena.add_type(
            FreeType(self.builtins.never, self.builtins.unknown)
        )

    def table(
        self,
        props: dict[str, TypeId] | None = None,
        indexer: tuple[TypeId, TypeId] | None = None,
    ) -> TypeId:
        return self.arena.add_type(
            TableType(
                {name: Property.rw(ty) for name, ty in (props or {}).items()},
                None if indexer is None else TableIndexer(*indexer),
            )
        )

    def with_metatable(
        self, table: TypeId, entries: dict[str, TypeId]
    ) -> TypeId:
        return self.arena.add_type(MetatableType(table, self.table(entries)))

    def function(
        self,
        params: Sequence[TypeId],
        returns: Sequence[TypeId],
        generics: Sequence[TypeId] = (),
    ) -> TypeId:
        return self.arena.add_type(
            FunctionType(
                self.arena.add_pack(params),
                self.arena.add_pack(returns),
                list(generics),
            )
        )

    def extern(
        self,
        name: str,
        props: dict[str, TypeId] | None = None,
        parent: TypeId | None = None,
    ) -> TypeId:
        return self.arena.add_type(
            ExternType(
                name,
                {k: Property.rw(v) for k, v in (props or {}).items()},
                parent,
            )
        )

    def pack(self, *types: TypeId) -> TypePackId:
        return self.arena.add_pack(types)

    def definition(
        self, name: str, source: str, has_errors: bool = False
    ) -> TypeFunctionDefinition:
        return TypeFunctionDefinition(
            name, textwrap.dedent(source), has_errors
        )

    def user_instance(
        self,
        definition: TypeFunctionDefinition,
        *args: TypeId,
        functions: dict[str, TypeFunctionDefinition] | None = None,
        aliases: dict[str, TypeFun] | None = None,
        owner: object | None = None,
    ) -> TypeId:
        data = UserDefinedFunctionData(
            weakref.ref(self.module if owner is None else owner),
            definition,
            {name: (peer, 0) for name, peer in (functions or {}).items()},
            {name: (alias, 0) for name, alias in (aliases or {}).items()},
        )
        return self.arena.add_type(
            TypeFunctionInstanceType(
                self.functions.user_func,
                args,
                user_func_name=definition.name,
                user_func_data=data,
            )
        )

    def reduce(
        self, ty: TypeId, force: bool = False
    ) -> FunctionGraphReductionResult:
        return reduce_type_functions(ty, (1, 1), self.ctx, force)


def error_messages(result: FunctionGraphReductionResult) -> list[str]:
    return [error.message for error in result.errors]
