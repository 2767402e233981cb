"""The builtin type function descriptors."""

from __future__ import annotations

import functools

from typefun.types import TypeFunction, TypeFunctionKind


class BuiltinTypeFunctions:
    def __init__(self) -> None:
        K = TypeFunctionKind
        self.not_func = TypeFunction('not', K.NOT)
        self.len_func = TypeFunction('len', K.LEN)
        self.unm_func = TypeFunction('unm', K.UNM)

        self.add_func = TypeFunction('add', K.ADD)
        self.sub_func = TypeFunction('sub', K.SUB)
        self.mul_func = TypeFunction('mul', K.MUL)
        self.div_func = TypeFunction('div', K.DIV)
        self.idiv_func = TypeFunction('idiv', K.IDIV)
        self.pow_func = TypeFunction('pow', K.POW)
        self.mod_func = TypeFunction('mod', K.MOD)

        self.concat_func = TypeFunction('concat', K.CONCAT)

        self.and_func = TypeFunction('and', K.AND, can_reduce_generics=True)
        self.or_func = TypeFunction('or', K.OR, can_reduce_generics=True)

        self.lt_func = TypeFunction('lt', K.LT)
        self.le_func = TypeFunction('le', K.LE)
        self.eq_func = TypeFunction('eq', K.EQ)

        self.refine_func = TypeFunction(
            'refine', K.REFINE, can_reduce_generics=True
        )
        self.singleton_func = TypeFunction('singleton', K.SINGLETON)
        self.union_func = TypeFunction('union', K.UNION)
        self.intersect_func = TypeFunction('intersect', K.INTERSECT)

        self.keyof_func = TypeFunction('keyof', K.KEYOF)
        self.rawkeyof_func = TypeFunction('rawkeyof', K.RAWKEYOF)
        self.index_func = TypeFunction('index', K.INDEX)
        self.rawget_func = TypeFunction('rawget', K.RAWGET)

        self.setmetatable_func = TypeFunction('setmetatable', K.SETMETATABLE)
        self.getmetatable_func = TypeFunction('getmetatable', K.GETMETATABLE)

        self.weakoptional_func = TypeFunction('weakoptional', K.WEAKOPTIONAL)

        # Shared by every user-defined function; instances carry the name.
        self.user_func = TypeFunction('user', K.USER)

    def all(self) -> list[TypeFunction]:
        return [
            value
            for value in vars(self).values()
            if isinstance(value, TypeFunction)
        ]

    def by_name(self, name: str) -> TypeFunction | None:
        for function in self.all():
            if function.name == name:
                return function
        return None


@functools.cache
def builtin_type_functions() -> BuiltinTypeFunctions:
    return BuiltinTypeFunctions()
