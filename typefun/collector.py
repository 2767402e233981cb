"""Finds the type function instances reachable from an entry node."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field

from typefun.errors import RecursionLimitException
from typefun.orderedset import InsertionOrderedSet
from typefun.types import (
    ExternType,
    TypeFunctionInstanceType,
    TypeFunctionInstanceTypePack,
    TypeId,
    TypePackId,
    TypePackVariant,
    TypeVariant,
)
from typefun.visitor import TypeOnceVisitor


@dataclass
class CollectedInstances:
    # Innermost instances come first.
    types: deque[TypeId] = field(default_factory=deque)
    packs: deque[TypePackId] = field(default_factory=deque)
    should_guess: set[TypeId | TypePackId] = field(default_factory=set)
    cyclic: InsertionOrderedSet[TypeId] = field(
        default_factory=InsertionOrderedSet
    )


@dataclass(frozen=True)
class TooDeep:
    limit: int


class InstanceCollector(TypeOnceVisitor):
    def __init__(self, recursion_limit: int, guesser_depth: int) -> None:
        super().__init__(recursion_limit)
        self.guesser_depth = guesser_depth
        self.collected = CollectedInstances()
        self._type_records: set[TypeId] = set()
        self._pack_records: set[TypePackId] = set()
        self._stack: list[TypeId | TypePackId] = []

    def cycle(self, node: TypeId | TypePackId) -> None:
        if node in self._stack and isinstance(node, TypeId):
            self.collected.cyclic.add(node)

    def visit(self, ty: TypeId, variant: TypeVariant) -> bool:
        if isinstance(variant, ExternType):
            return False
        if not isinstance(variant, TypeFunctionInstanceType):
            return True
        self._enter(ty)
        if ty not in self._type_records:
            self._type_records.add(ty)
            self.collected.types.appendleft(ty)
        try:
            for argument in variant.type_arguments:
                self.traverse(argument)
            for pack_argument in variant.pack_arguments:
                self.traverse(pack_argument)
        finally:
            self._stack.pop()
        return False

    def visit_pack(self, tp: TypePackId, variant: TypePackVariant) -> bool:
        if not isinstance(variant, TypeFunctionInstanceTypePack):
            return True
        self._enter(tp)
        if tp not in self._pack_records:
            self._pack_records.add(tp)
            self.collected.packs.appendleft(tp)
        try:
            for argument in variant.type_arguments:
                self.traverse(argument)
            for pack_argument in variant.pack_arguments:
                self.traverse(pack_argument)
        finally:
            self._stack.pop()
        return False

    def _enter(self, node: TypeId | TypePackId) -> None:
        self._stack.append(node)
        if 0 <= self.guesser_depth < len(self._stack):
            self.collected.should_guess.add(node)


def collect_instances(
    entry: TypeId | TypePackId,
    recursion_limit: int,
    guesser_depth: int = -1,
) -> CollectedInstances | TooDeep:
    """Walk the graph under `entry` and queue its instances innermost-first.

    An instance seen again while it is still being traversed lies on a
    cycle; one seen again through a different path is merely shared."""
    collector = InstanceCollector(recursion_limit, guesser_depth)
    try:
        collector.traverse(entry)
    except (RecursionLimitException, RecursionError):
        return TooDeep(recursion_limit)
    return collector.collected
