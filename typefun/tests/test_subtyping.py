import unittest

from typefun.calls import extend_type_pack, first, solve_function_call
from typefun.subtyping import is_subtype
from typefun.substitution import ReplaceGenerics
from typefun.tests.fixtures import Fixture
from typefun.types import (
    Property,
    TableType,
    TypeId,
    VariadicTypePack,
    flatten,
    get,
    to_string,
)

fixture = Fixture()
builtins = fixture.builtins


def subtype(sub: TypeId, sup: TypeId) -> bool:
    return is_subtype(builtins, fixture.arena, sub, sup)


class TestSubtyping(unittest.TestCase):
    def test_scalars(self) -> None:
        self.assertTrue(subtype(fixture.singleton('a'), builtins.string))
        self.assertTrue(subtype(builtins.true_, builtins.boolean))
        self.assertFalse(subtype(builtins.number, builtins.string))
        self.assertTrue(subtype(builtins.never, builtins.number))
        self.assertTrue(subtype(builtins.number, builtins.unknown))

    def test_unions(self) -> None:
        either = fixture.union(builtins.number, builtins.string)
        self.assertTrue(subtype(builtins.number, either))
        self.assertFalse(subtype(either, builtins.number))

    def test_negations(self) -> None:
        not_string = fixture.negation(builtins.string)
        self.assertTrue(subtype(builtins.number, not_string))
        self.assertFalse(subtype(fixture.singleton('a'), not_string))

    def test_table_width(self) -> None:
        wide = fixture.table({'a': builtins.number, 'b': builtins.string})
        narrow = fixture.table({'a': builtins.number})
        self.assertTrue(subtype(wide, narrow))
        self.assertFalse(subtype(narrow, wide))

    def test_absent_properties_read_as_nil(self) -> None:
        optional = fixture.table({'a': fixture.optional(builtins.number)})
        self.assertTrue(subtype(fixture.table(), optional))

    def test_functions(self) -> None:
        accepts_anything = fixture.function([builtins.unknown], [builtins.number])
        accepts_numbers = fixture.function([builtins.number], [builtins.number])
        self.assertTrue(subtype(accepts_anything, accepts_numbers))
        self.assertFalse(subtype(accepts_numbers, accepts_anything))

    def test_externs(self) -> None:
        base = fixture.extern('Instance')
        part = fixture.extern('Part', parent=base)
        self.assertTrue(subtype(part, base))
        self.assertFalse(subtype(base, part))

    def test_cyclic_tables(self) -> None:
        def linked() -> TypeId:
            ty = fixture.table()
            table = get(ty, TableType)
            assert table is not None
            table.props['next'] = Property.rw(ty)
            return ty

        self.assertTrue(subtype(linked(), linked()))


class TestCalls(unittest.TestCase):
    def test_matching_arguments(self) -> None:
        function = fixture.function([builtins.number], [builtins.string])
        returns = solve_function_call(
            fixture.ctx, function, fixture.pack(builtins.number)
        )
        assert returns is not None
        self.assertEqual([builtins.string], flatten(returns)[0])

    def test_mismatched_arguments(self) -> None:
        function = fixture.function([builtins.number], [builtins.string])
        self.assertIsNone(
            solve_function_call(
                fixture.ctx, function, fixture.pack(builtins.string)
            )
        )

    def test_overloads(self) -> None:
        overloads = fixture.intersection(
            fixture.function([builtins.string], [builtins.string]),
            fixture.function([builtins.number], [builtins.boolean]),
        )
        returns = solve_function_call(
            fixture.ctx, overloads, fixture.pack(builtins.number)
        )
        assert returns is not None
        self.assertEqual([builtins.boolean], flatten(returns)[0])

    def test_call_metamethods(self) -> None:
        callable_table = fixture.with_metatable(
            fixture.table(),
            {
                '__call': fixture.function(
                    [builtins.unknown, builtins.number], [builtins.string]
                )
            },
        )
        returns = solve_function_call(
            fixture.ctx, callable_table, fixture.pack(builtins.number)
        )
        assert returns is not None
        self.assertEqual([builtins.string], flatten(returns)[0])

    def test_generic_functions_are_instantiated(self) -> None:
        t = fixture.generic()
        identity = fixture.function([t], [t], [t])
        returns = solve_function_call(
            fixture.ctx, identity, fixture.pack(builtins.number)
        )
        assert returns is not None
        self.assertIsNot(t, flatten(returns)[0][0])

    def test_pack_helpers(self) -> None:
        variadic = fixture.arena.add_type_pack(VariadicTypePack(builtins.number))
        pack = fixture.arena.add_pack([builtins.string], variadic)
        self.assertIs(builtins.string, first(pack))
        self.assertIs(builtins.number, first(variadic))
        self.assertIsNone(first(fixture.pack()))
        self.assertEqual(
            [builtins.string, builtins.number, builtins.number],
            extend_type_pack(pack, 3),
        )


class TestReplaceGenerics(unittest.TestCase):
    def test_replaces_and_clones(self) -> None:
        t = fixture.generic()
        original = fixture.table({'x': t, 'y': builtins.string})
        replaced = ReplaceGenerics(fixture.arena, {t: builtins.number}).substitute(
            original
        )
        assert replaced is not None
        self.assertEqual('{ x: number, y: string }', to_string(replaced))
        self.assertEqual('{ x: T, y: string }', to_string(original))

    def test_clean_types_are_shared(self) -> None:
        t = fixture.generic()
        ty = fixture.table({'y': builtins.string})
        self.assertIs(
            ty, ReplaceGenerics(fixture.arena, {t: builtins.number}).substitute(ty)
        )

    def test_limit(self) -> None:
        t = fixture.generic()
        nested = fixture.table({'a': fixture.table({'b': t})})
        replacer = ReplaceGenerics(fixture.arena, {t: builtins.number}, limit=1)
        self.assertIsNone(replacer.substitute(nested))
