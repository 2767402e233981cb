"""Best-effort answers for instances nested too deeply to reduce."""

from __future__ import annotations

from typefun.types import (
    BuiltinTypes,
    IntersectionType,
    TypeArena,
    TypeFunctionInstanceType,
    TypeFunctionInstanceTypePack,
    TypeFunctionKind,
    TypeId,
    TypePackId,
    UnionType,
    get,
    get_pack,
)

K = TypeFunctionKind

_NUMERIC = {K.ADD, K.SUB, K.MUL, K.DIV, K.IDIV, K.POW, K.MOD, K.UNM, K.LEN}
_BOOLEAN = {K.LT, K.LE, K.EQ, K.NOT}


class TypeFunctionReductionGuesser:
    """Guesses the result of an instance from its function alone.

    The guess is the type the operator produces in the common case; it is
    only used for instances the collector flagged as nested past the
    guesser depth."""

    def __init__(self, arena: TypeArena, builtins: BuiltinTypes) -> None:
        self.arena = arena
        self.builtins = builtins

    def guess(self, node: TypeId | TypePackId) -> TypeId | TypePackId | None:
        if isinstance(node, TypePackId):
            return self.guess_pack(node)
        instance = get(node, TypeFunctionInstanceType)
        if instance is None:
            return None
        return self._guess(instance.function.kind, instance.type_arguments)

    def guess_pack(self, tp: TypePackId) -> TypePackId | None:
        instance = get_pack(tp, TypeFunctionInstanceTypePack)
        if instance is None:
            return None
        guessed = self._guess(instance.function.kind, instance.type_arguments)
        if guessed is None:
            return None
        return self.arena.add_pack([guessed])

    def _guess(
        self, kind: TypeFunctionKind, arguments: list[TypeId]
    ) -> TypeId | None:
        if kind in _NUMERIC:
            return self.builtins.number
        if kind in _BOOLEAN:
            return self.builtins.boolean
        if kind is K.CONCAT:
            return self.builtins.string
        if kind is K.UNION and arguments:
            return self.arena.add_type(UnionType(list(arguments)))
        if kind is K.INTERSECT and arguments:
            return self.arena.add_type(IntersectionType(list(arguments)))
        return None
