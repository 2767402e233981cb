import unittest

from typefun.errors import UninhabitedTypeFunction
from typefun.tests.fixtures import Fixture
from typefun.types import (
    MetatableType,
    TypeId,
    UnionType,
    follow,
    get,
    to_string,
)

fixture = Fixture()
builtins = fixture.builtins
functions = fixture.functions


def reduced(ty: TypeId) -> TypeId:
    result = fixture.reduce(ty)
    assert not result.errors, result.errors
    return follow(ty)


def point() -> TypeId:
    return fixture.table({'x': builtins.number, 'y': builtins.number})


class TableTestCase(unittest.TestCase):
    def assertErroneous(self, ty: TypeId) -> None:
        result = fixture.reduce(ty)
        self.assertEqual(1, len(result.errors))
        self.assertIsInstance(result.errors[0], UninhabitedTypeFunction)
        self.assertIs(ty, follow(ty))


class TestKeyOf(TableTestCase):
    def test_properties(self) -> None:
        ty = fixture.instance(functions.keyof_func, point())
        self.assertEqual('"x" | "y"', to_string(reduced(ty)))

    def test_unions_keep_common_keys(self) -> None:
        ty = fixture.instance(
            functions.keyof_func,
            fixture.union(
                point(),
                fixture.table({'y': builtins.string, 'z': builtins.string}),
            ),
        )
        self.assertEqual('"y"', to_string(reduced(ty)))

    def test_string_indexers(self) -> None:
        ty = fixture.instance(
            functions.keyof_func,
            fixture.table(
                {'x': builtins.number}, (builtins.string, builtins.number)
            ),
        )
        self.assertIs(builtins.string, reduced(ty))

    def test_empty_table(self) -> None:
        ty = fixture.instance(functions.keyof_func, fixture.table())
        self.assertIs(builtins.never, reduced(ty))

    def test_metatable_index(self) -> None:
        shape = fixture.with_metatable(
            fixture.table({'a': builtins.number}),
            {'__index': fixture.table({'b': builtins.number})},
        )
        ty = fixture.instance(functions.keyof_func, shape)
        self.assertEqual('"b" | "a"', to_string(reduced(ty)))
        raw = fixture.instance(functions.rawkeyof_func, shape)
        self.assertEqual('"a"', to_string(reduced(raw)))

    def test_externs_inherit_keys(self) -> None:
        base = fixture.extern('Instance', {'Name': builtins.string})
        part = fixture.extern('Part', {'Size': builtins.number}, base)
        ty = fixture.instance(functions.keyof_func, part)
        self.assertEqual('"Size" | "Name"', to_string(reduced(ty)))

    def test_non_tables(self) -> None:
        self.assertErroneous(
            fixture.instance(functions.keyof_func, builtins.number)
        )
        self.assertErroneous(
            fixture.instance(
                functions.keyof_func, fixture.optional(fixture.table())
            )
        )


class TestIndex(TableTestCase):
    def test_property(self) -> None:
        ty = fixture.instance(
            functions.index_func, point(), fixture.singleton('x')
        )
        self.assertIs(builtins.number, reduced(ty))

    def test_missing_property(self) -> None:
        self.assertErroneous(
            fixture.instance(
                functions.index_func, point(), fixture.singleton('z')
            )
        )

    def test_indexer(self) -> None:
        ty = fixture.instance(
            functions.index_func,
            fixture.table(indexer=(builtins.string, builtins.boolean)),
            fixture.singleton('anything'),
        )
        self.assertIs(builtins.boolean, reduced(ty))

    def test_union_keys(self) -> None:
        ty = fixture.instance(
            functions.index_func,
            fixture.table({'a': builtins.number, 'b': builtins.string}),
            fixture.union(fixture.singleton('a'), fixture.singleton('b')),
        )
        self.assertEqual('number | string', to_string(reduced(ty)))

    def test_optional_properties(self) -> None:
        ty = fixture.instance(
            functions.index_func,
            fixture.table({'a': fixture.optional(builtins.number)}),
            fixture.singleton('a'),
        )
        self.assertEqual('number | nil', to_string(reduced(ty)))

    def test_metatable_index_table(self) -> None:
        shape = fixture.with_metatable(
            fixture.table(),
            {'__index': fixture.table({'a': builtins.number})},
        )
        ty = fixture.instance(
            functions.index_func, shape, fixture.singleton('a')
        )
        self.assertIs(builtins.number, reduced(ty))
        self.assertErroneous(
            fixture.instance(
                functions.rawget_func, shape, fixture.singleton('a')
            )
        )

    def test_metatable_index_function(self) -> None:
        shape = fixture.with_metatable(
            fixture.table(),
            {
                '__index': fixture.function(
                    [builtins.string], [builtins.boolean]
                )
            },
        )
        ty = fixture.instance(
            functions.index_func, shape, fixture.singleton('b')
        )
        self.assertIs(builtins.boolean, reduced(ty))

    def test_externs(self) -> None:
        base = fixture.extern('Instance', {'Name': builtins.string})
        part = fixture.extern('Part', {'Size': builtins.number}, base)
        ty = fixture.instance(
            functions.index_func, part, fixture.singleton('Name')
        )
        self.assertIs(builtins.string, reduced(ty))
        self.assertErroneous(
            fixture.instance(
                functions.rawget_func, part, fixture.singleton('Name')
            )
        )

    def test_unknown_keys(self) -> None:
        self.assertErroneous(
            fixture.instance(functions.index_func, point(), builtins.unknown)
        )

    def test_any_suppresses_errors(self) -> None:
        ty = fixture.instance(
            functions.index_func, builtins.any, fixture.singleton('a')
        )
        self.assertIs(builtins.any, reduced(ty))


class TestMetatables(TableTestCase):
    def test_setmetatable(self) -> None:
        target = point()
        metatable = fixture.table({'__index': fixture.table()})
        ty = fixture.instance(functions.setmetatable_func, target, metatable)
        result = get(reduced(ty), MetatableType)
        assert result is not None
        self.assertIs(target, result.table)
        self.assertIs(metatable, result.metatable)

    def test_setmetatable_on_a_locked_table(self) -> None:
        locked = fixture.with_metatable(
            fixture.table(), {'__metatable': builtins.string}
        )
        self.assertErroneous(
            fixture.instance(
                functions.setmetatable_func, locked, fixture.table()
            )
        )

    def test_setmetatable_needs_tables(self) -> None:
        self.assertErroneous(
            fixture.instance(
                functions.setmetatable_func, builtins.number, fixture.table()
            )
        )
        self.assertErroneous(
            fixture.instance(
                functions.setmetatable_func, fixture.table(), builtins.number
            )
        )

    def test_getmetatable(self) -> None:
        metatable = fixture.table({'__index': fixture.table()})
        shape = fixture.arena.add_type(MetatableType(point(), metatable))
        ty = fixture.instance(functions.getmetatable_func, shape)
        self.assertIs(metatable, reduced(ty))

    def test_getmetatable_of_a_plain_table(self) -> None:
        ty = fixture.instance(functions.getmetatable_func, point())
        self.assertIs(builtins.nil, reduced(ty))

    def test_getmetatable_of_strings(self) -> None:
        for target in (builtins.string, fixture.singleton('a')):
            with self.subTest(target=to_string(target)):
                ty = fixture.instance(functions.getmetatable_func, target)
                self.assertIs(builtins.string_metatable, reduced(ty))

    def test_locked_metatable(self) -> None:
        locked = fixture.with_metatable(
            fixture.table(), {'__metatable': builtins.string}
        )
        ty = fixture.instance(functions.getmetatable_func, locked)
        self.assertIs(builtins.string, reduced(ty))

    def test_getmetatable_of_a_union(self) -> None:
        ty = fixture.instance(
            functions.getmetatable_func,
            fixture.union(point(), builtins.string),
        )
        union = get(reduced(ty), UnionType)
        assert union is not None
        self.assertEqual([builtins.nil, builtins.string_metatable], union.options)

    def test_getmetatable_of_a_function(self) -> None:
        self.assertErroneous(
            fixture.instance(
                functions.getmetatable_func,
                fixture.function([], []),
            )
        )
