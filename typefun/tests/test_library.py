import unittest

from typefun.runtime.library import TypesLibrary
from typefun.runtime.values import IndexerValue, PropertyValue, TypeValue, property_name

types = TypesLibrary()


class TestConstructors(unittest.TestCase):
    def test_singletons(self) -> None:
        self.assertEqual('hi', types.singleton('hi').value())
        self.assertIs(True, types.singleton(True).value())
        self.assertIs(types.nil, types.singleton(None))
        with self.assertRaises(TypeError):
            types.singleton(1)  # type: ignore[arg-type]

    def test_negation(self) -> None:
        self.assertIs(types.string, types.negationof(types.string).inner())
        for ty in (types.newtable(), types.newfunction()):
            with self.subTest(ty.tag):
                with self.assertRaises(TypeError):
                    types.negationof(ty)

    def test_unions_and_intersections_need_two_types(self) -> None:
        union = types.unionof(types.number, types.string)
        self.assertEqual([types.number, types.string], union.components())
        with self.assertRaises(TypeError):
            types.unionof(types.number)
        with self.assertRaises(TypeError):
            types.intersectionof()
        with self.assertRaises(TypeError):
            types.unionof(types.number, 'string')  # type: ignore[arg-type]

    def test_optional(self) -> None:
        optional = types.optional(types.number)
        self.assertEqual([types.number, types.nil], optional.components())
        self.assertIs(optional, types.optional(optional))
        self.assertIs(types.nil, types.optional(types.nil))

    def test_generics(self) -> None:
        t = types.generic('T')
        self.assertEqual('T', t.name())
        self.assertFalse(t.ispack())
        self.assertTrue(types.generic('U', ispack=True).ispack())
        with self.assertRaises(TypeError):
            types.generic('')


class TestTables(unittest.TestCase):
    def test_newtable(self) -> None:
        table = types.newtable(
            {'x': types.number, types.singleton('y'): types.string},
            {'index': types.string, 'readresult': types.boolean},
        )
        self.assertEqual(['x', 'y'], list(table.properties()))
        self.assertIs(types.string, table.readproperty('y'))
        indexer = table.indexer()
        assert indexer is not None
        self.assertIs(types.boolean, indexer.writeresult)

    def test_newtable_with_split_properties(self) -> None:
        table = types.newtable({'x': PropertyValue(read=types.number)})
        self.assertIs(types.number, table.readproperty('x'))
        self.assertIsNone(table.writeproperty('x'))

    def test_incomplete_indexers(self) -> None:
        with self.assertRaises(TypeError):
            types.newtable(indexer={'index': types.string})

    def test_indexer_values_are_copied(self) -> None:
        indexer = IndexerValue(types.string, types.number, None)
        table = types.newtable(indexer=indexer)
        self.assertIsNot(indexer, table.indexer())
        self.assertIsNone(table.indexer().writeresult)

    def test_setproperty(self) -> None:
        table = types.newtable()
        table.setproperty('x', types.number)
        self.assertIs(types.number, table.writeproperty('x'))
        table.setproperty('x')
        self.assertEqual({}, table.properties())

    def test_property_halves(self) -> None:
        table = types.newtable()
        table.setreadproperty('x', types.number)
        table.setwriteproperty('x', types.string)
        self.assertIs(types.number, table.readproperty('x'))
        self.assertIs(types.string, table.writeproperty('x'))
        table.setreadproperty('x')
        table.setwriteproperty('x')
        self.assertNotIn('x', table.properties())

    def test_setindexer(self) -> None:
        table = types.newtable()
        table.setindexer(types.number, types.string)
        self.assertIs(types.number, table.indexer().index)
        table.setindexer(types.never)
        self.assertIsNone(table.indexer())
        with self.assertRaises(TypeError):
            table.setindexer(types.number)

    def test_setmetatable_needs_a_table(self) -> None:
        table = types.newtable()
        with self.assertRaises(TypeError):
            table.setmetatable(types.number)
        table.setmetatable(types.newtable())
        self.assertEqual('table', table.metatable().tag)

    def test_methods_check_the_tag(self) -> None:
        with self.assertRaises(TypeError):
            types.number.properties()
        with self.assertRaises(TypeError):
            types.newtable().components()


class TestFunctions(unittest.TestCase):
    def test_newfunction(self) -> None:
        t = types.generic('T')
        function = types.newfunction(
            {'head': [t, types.number], 'tail': types.string},
            {'head': [t]},
            [t],
        )
        parameters = function.parameters()
        self.assertEqual([t, types.number], parameters.head)
        self.assertIs(types.string, parameters.tail)
        self.assertEqual([t], function.returns().head)
        self.assertEqual([t], function.generics())

    def test_generics_must_be_generic(self) -> None:
        with self.assertRaises(TypeError):
            types.newfunction(generics=[types.number])

    def test_pack_heads_are_lists(self) -> None:
        with self.assertRaises(TypeError):
            types.newfunction({'head': types.number})

    def test_setters(self) -> None:
        function = types.newfunction()
        function.setparameters([types.number])
        function.setreturns(None, types.string)
        self.assertEqual([types.number], function.parameters().head)
        self.assertEqual([], function.returns().head)
        self.assertIs(types.string, function.returns().tail)


class TestCopy(unittest.TestCase):
    def test_copies_are_deep(self) -> None:
        inner = types.newtable({'a': types.number})
        outer = types.newtable({'inner': inner})
        copied = types.copy(outer)
        self.assertIsNot(outer, copied)
        self.assertIsNot(inner, copied.readproperty('inner'))
        self.assertIs(types.number, copied.readproperty('inner').readproperty('a'))

    def test_cycles_are_preserved(self) -> None:
        table = types.newtable()
        table.setproperty('self', table)
        copied = types.copy(table)
        self.assertIs(copied, copied.readproperty('self'))

    def test_primitives_are_shared(self) -> None:
        self.assertIs(types.number, types.copy(types.number))


class TestValues(unittest.TestCase):
    def test_unknown_tags(self) -> None:
        with self.assertRaises(ValueError):
            TypeValue('bogus')
        with self.assertRaises(ValueError):
            types.number.is_('bogus')

    def test_is(self) -> None:
        self.assertTrue(types.number.is_('number'))
        self.assertFalse(types.number.is_('string'))

    def test_property_names(self) -> None:
        self.assertEqual('x', property_name('x'))
        self.assertEqual('x', property_name(types.singleton('x')))
        for key in (types.singleton(True), types.number, 1):
            with self.subTest(key=key):
                with self.assertRaises(TypeError):
                    property_name(key)  # type: ignore[arg-type]
