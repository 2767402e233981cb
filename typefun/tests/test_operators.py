import unittest

from typefun.config import DEFAULT_CONFIG
from typefun.context import Constraint, ReduceConstraint, Scope
from typefun.errors import UninhabitedTypeFunction
from typefun.tests.fixtures import FakeSolver, Fixture
from typefun.types import (
    TypeFunctionInstanceState,
    TypeFunctionInstanceType,
    TypeId,
    follow,
    get,
)

fixture = Fixture()
builtins = fixture.builtins
functions = fixture.functions


def reduced(ty: TypeId, on: Fixture = fixture) -> TypeId:
    result = on.reduce(ty)
    assert not result.errors, result.errors
    return follow(ty)


class ErroneousMixin(unittest.TestCase):
    def assertErroneous(self, ty: TypeId, on: Fixture = fixture) -> None:
        result = on.reduce(ty)
        self.assertEqual(1, len(result.errors))
        self.assertIsInstance(result.errors[0], UninhabitedTypeFunction)
        self.assertIs(ty, follow(ty))
        instance = get(ty, TypeFunctionInstanceType)
        assert instance is not None
        self.assertIs(TypeFunctionInstanceState.STUCK, instance.state)


class TestArithmetic(ErroneousMixin):
    def test_numbers(self) -> None:
        ty = fixture.instance(functions.add_func, builtins.number, builtins.number)
        self.assertIs(builtins.number, reduced(ty))

    def test_every_arithmetic_operator(self) -> None:
        for function in (
            functions.sub_func,
            functions.mul_func,
            functions.div_func,
            functions.idiv_func,
            functions.pow_func,
            functions.mod_func,
        ):
            with self.subTest(function.name):
                ty = fixture.instance(function, builtins.number, builtins.number)
                self.assertIs(builtins.number, reduced(ty))

    def test_strings_cannot_be_added(self) -> None:
        self.assertErroneous(
            fixture.instance(functions.add_func, builtins.number, builtins.string)
        )

    def test_never(self) -> None:
        ty = fixture.instance(functions.add_func, builtins.never, builtins.string)
        self.assertIs(builtins.never, reduced(ty))

    def test_any_suppresses_errors(self) -> None:
        ty = fixture.instance(functions.add_func, builtins.any, builtins.number)
        self.assertIs(builtins.any, reduced(ty))

    def test_self_reference(self) -> None:
        ty = fixture.self_referential(functions.add_func, None, builtins.number)
        self.assertIs(builtins.never, reduced(ty))

    def test_metamethod(self) -> None:
        vector = fixture.with_metatable(
            fixture.table(),
            {
                '__add': fixture.function(
                    [builtins.unknown, builtins.number], [builtins.string]
                )
            },
        )
        ty = fixture.instance(functions.add_func, vector, builtins.number)
        self.assertIs(builtins.string, reduced(ty))

    def test_reversed_metamethod(self) -> None:
        vector = fixture.with_metatable(
            fixture.table(),
            {
                '__mul': fixture.function(
                    [builtins.unknown, builtins.number], [builtins.boolean]
                )
            },
        )
        ty = fixture.instance(functions.mul_func, builtins.number, vector)
        self.assertIs(builtins.boolean, reduced(ty))

    def test_overloaded_metamethod(self) -> None:
        overloads = fixture.intersection(
            fixture.function(
                [builtins.unknown, builtins.string], [builtins.boolean]
            ),
            fixture.function(
                [builtins.unknown, builtins.number], [builtins.string]
            ),
        )
        vector = fixture.with_metatable(fixture.table(), {'__add': overloads})
        ty = fixture.instance(functions.add_func, vector, builtins.number)
        self.assertIs(builtins.string, reduced(ty))

    def test_metamethod_rejecting_the_operands(self) -> None:
        vector = fixture.with_metatable(
            fixture.table(),
            {
                '__add': fixture.function(
                    [builtins.unknown, builtins.string], [builtins.string]
                )
            },
        )
        self.assertErroneous(
            fixture.instance(functions.add_func, vector, builtins.number)
        )

    def test_generic_operands_settle_the_instance(self) -> None:
        ty = fixture.instance(
            functions.add_func, fixture.generic(), builtins.number
        )
        result = fixture.reduce(ty)
        self.assertFalse(result.errors)
        instance = get(ty, TypeFunctionInstanceType)
        assert instance is not None
        self.assertIs(TypeFunctionInstanceState.SOLVED, instance.state)

    def test_stuck_operands_are_reported_once(self) -> None:
        inner = fixture.instance(
            functions.add_func, builtins.number, builtins.string
        )
        outer = fixture.instance(functions.add_func, inner, builtins.number)
        result = fixture.reduce(outer)
        self.assertEqual(1, len(result.errors))
        self.assertIs(inner, result.errors[0].ty)
        instance = get(outer, TypeFunctionInstanceType)
        assert instance is not None
        self.assertIs(TypeFunctionInstanceState.STUCK, instance.state)

    def test_union_operands_distribute(self) -> None:
        ty = fixture.instance(
            functions.add_func,
            fixture.union(builtins.number, builtins.string),
            builtins.number,
        )
        self.assertErroneous(ty)

    def test_cartesian_product_limit(self) -> None:
        limited = Fixture(
            config=DEFAULT_CONFIG.replace(cartesian_product_limit=2)
        )
        vector = limited.with_metatable(
            limited.table(),
            {
                '__add': limited.function(
                    [limited.builtins.unknown, limited.builtins.unknown],
                    [limited.builtins.number],
                )
            },
        )
        ty = limited.instance(
            functions.add_func,
            limited.union(vector, limited.builtins.number),
            limited.union(vector, limited.builtins.number),
        )
        self.assertErroneous(ty, limited)


class TestUnary(ErroneousMixin):
    def test_len(self) -> None:
        for operand in (fixture.table(), builtins.string, fixture.singleton('a')):
            with self.subTest(operand=operand):
                ty = fixture.instance(functions.len_func, operand)
                self.assertIs(builtins.number, reduced(ty))

    def test_len_of_a_number(self) -> None:
        self.assertErroneous(fixture.instance(functions.len_func, builtins.number))

    def test_len_with_metatable(self) -> None:
        ty = fixture.instance(
            functions.len_func,
            fixture.with_metatable(fixture.table(), {}),
        )
        self.assertIs(builtins.number, reduced(ty))

    def test_unm(self) -> None:
        ty = fixture.instance(functions.unm_func, builtins.number)
        self.assertIs(builtins.number, reduced(ty))
        self.assertErroneous(fixture.instance(functions.unm_func, builtins.string))

    def test_unm_metamethod(self) -> None:
        vector = fixture.with_metatable(
            fixture.table(),
            {'__unm': fixture.function([builtins.unknown], [builtins.boolean])},
        )
        ty = fixture.instance(functions.unm_func, vector)
        self.assertIs(builtins.boolean, reduced(ty))

    def test_not(self) -> None:
        ty = fixture.instance(functions.not_func, fixture.table())
        self.assertIs(builtins.boolean, reduced(ty))

    def test_not_distributes_over_unions(self) -> None:
        ty = fixture.instance(
            functions.not_func, fixture.union(builtins.number, builtins.string)
        )
        fixture.reduce(ty)
        union = get(ty, TypeFunctionInstanceType)
        assert union is not None
        self.assertIs(functions.union_func, union.function)
        self.assertIs(builtins.boolean, reduced(ty))

    def test_distribution_asks_the_solver_to_come_back(self) -> None:
        solver = FakeSolver()
        solved = Fixture(solver=solver)
        solved.ctx.constraint = Constraint(
            Scope(), (3, 4), ReduceConstraint(solved.builtins.number)
        )
        ty = solved.instance(
            functions.not_func,
            solved.union(solved.builtins.number, solved.builtins.nil),
        )
        solved.reduce(ty)
        (constraint,) = solver.pushed
        self.assertIs(follow(ty), constraint.kind.ty)
        self.assertEqual((3, 4), constraint.location)
        self.assertEqual([(solved.ctx.constraint, constraint)], solver.inherited)


class TestConcat(ErroneousMixin):
    def test_strings_and_numbers(self) -> None:
        ty = fixture.instance(
            functions.concat_func, builtins.string, builtins.number
        )
        self.assertIs(builtins.string, reduced(ty))

    def test_booleans(self) -> None:
        self.assertErroneous(
            fixture.instance(
                functions.concat_func, builtins.boolean, builtins.string
            )
        )


class TestComparison(ErroneousMixin):
    def test_numbers(self) -> None:
        ty = fixture.instance(functions.lt_func, builtins.number, builtins.number)
        self.assertIs(builtins.boolean, reduced(ty))

    def test_strings(self) -> None:
        ty = fixture.instance(
            functions.le_func, builtins.string, fixture.singleton('a')
        )
        self.assertIs(builtins.boolean, reduced(ty))

    def test_mixed(self) -> None:
        self.assertErroneous(
            fixture.instance(functions.lt_func, builtins.string, builtins.number)
        )

    def test_free_operand_becomes_a_number(self) -> None:
        solved = Fixture(solver=FakeSolver())
        solved.ctx.constraint = Constraint(
            Scope(), (1, 1), ReduceConstraint(solved.builtins.number)
        )
        free = solved.free()
        ty = solved.instance(functions.lt_func, free, solved.builtins.number)
        self.assertIs(solved.builtins.boolean, reduced(ty, solved))
        self.assertIs(solved.builtins.number, follow(free))


class TestEq(ErroneousMixin):
    def test_overlapping(self) -> None:
        ty = fixture.instance(
            functions.eq_func, builtins.string, fixture.singleton('a')
        )
        self.assertIs(builtins.boolean, reduced(ty))

    def test_disjoint_singletons(self) -> None:
        ty = fixture.instance(
            functions.eq_func, fixture.singleton('a'), fixture.singleton('b')
        )
        self.assertIs(builtins.false_, reduced(ty))

    def test_disjoint_primitives(self) -> None:
        self.assertErroneous(
            fixture.instance(functions.eq_func, builtins.number, builtins.string)
        )
