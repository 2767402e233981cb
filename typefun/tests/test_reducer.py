import unittest

from typefun.collector import TooDeep, collect_instances
from typefun.config import DEFAULT_CONFIG
from typefun.errors import (
    CodeTooComplex,
    InternalError,
    UninhabitedTypeFunction,
)
from typefun.normalize import reentrancy
from typefun.reducer import (
    TypeFunctionReducer,
    reduce_type_functions,
    reduce_type_pack_functions,
)
from typefun.tests.fixtures import Fixture
from typefun.types import (
    TypeArena,
    TypeFunctionInstanceState,
    TypeFunctionInstanceType,
    TypeFunctionInstanceTypePack,
    TypeId,
    TypePack,
    follow,
    get,
)

fixture = Fixture()
builtins = fixture.builtins
functions = fixture.functions


def nested_sums(on: Fixture, depth: int) -> list[TypeId]:
    """add<add<...<number, number>...>, number>, innermost first."""
    sums = [on.instance(functions.add_func, on.builtins.number, on.builtins.number)]
    for _ in range(depth - 1):
        sums.append(
            on.instance(functions.add_func, sums[-1], on.builtins.number)
        )
    return sums


class TestReduction(unittest.TestCase):
    def test_nested_instances_reduce_innermost_first(self) -> None:
        sums = nested_sums(fixture, 3)
        result = fixture.reduce(sums[-1])
        self.assertFalse(result.errors)
        self.assertEqual(sums, list(result.reduced_types))
        for ty in sums:
            self.assertIs(builtins.number, follow(ty))

    def test_nothing_to_reduce(self) -> None:
        result = fixture.reduce(fixture.table({'x': builtins.number}))
        self.assertFalse(result.reduced_types)
        self.assertFalse(result.errors)

    def test_instances_inside_structure(self) -> None:
        inner = fixture.instance(functions.len_func, builtins.string)
        ty = fixture.table({'size': inner})
        fixture.reduce(ty)
        self.assertIs(builtins.number, follow(inner))

    def test_step_limit(self) -> None:
        limited = Fixture(config=DEFAULT_CONFIG.replace(maximum_steps=1))
        sums = nested_sums(limited, 3)
        result = limited.reduce(sums[-1])
        self.assertEqual(1, len(result.errors))
        self.assertIsInstance(result.errors[0], CodeTooComplex)
        self.assertEqual((1, 1), result.errors[0].location)
        self.assertIs(sums[-1], follow(sums[-1]))

    def test_too_deep(self) -> None:
        shallow = Fixture(config=DEFAULT_CONFIG.replace(recursion_limit=2))
        sums = nested_sums(shallow, 5)
        result = shallow.reduce(sums[-1])
        self.assertFalse(result.reduced_types)
        self.assertFalse(result.errors)

    def test_reentrant_runs_do_nothing(self) -> None:
        ty = fixture.instance(functions.add_func, builtins.number, builtins.number)
        with reentrancy(fixture.ctx.normalizer.shared_state, True):
            result = fixture.reduce(ty)
        self.assertFalse(result.reduced_types)
        self.assertIs(ty, follow(ty))
        self.assertFalse(fixture.ctx.normalizer.shared_state.reentrant_type_reduction)

    def test_instances_from_another_arena(self) -> None:
        foreign = TypeArena('foreign')
        ty = foreign.add_type(
            TypeFunctionInstanceType(
                functions.add_func, [builtins.number, builtins.number]
            )
        )
        result = reduce_type_functions(ty, (2, 3), fixture.ctx)
        self.assertEqual(1, len(result.errors))
        self.assertIsInstance(result.errors[0], InternalError)
        self.assertEqual((2, 3), result.errors[0].location)
        self.assertIs(ty, follow(ty))

    def test_pack_instances(self) -> None:
        tp = fixture.arena.add_type_pack(
            TypeFunctionInstanceTypePack(
                functions.add_func, [builtins.number, builtins.number]
            )
        )
        result = reduce_type_pack_functions(tp, (1, 1), fixture.ctx)
        self.assertEqual([tp], list(result.reduced_packs))
        pack = follow(tp).ty
        assert isinstance(pack, TypePack)
        self.assertEqual([builtins.number], list(pack.head))

    def test_errors_carry_the_location(self) -> None:
        ty = fixture.instance(functions.add_func, builtins.number, builtins.string)
        result = reduce_type_functions(ty, (7, 9), fixture.ctx)
        (error,) = result.errors
        self.assertIsInstance(error, UninhabitedTypeFunction)
        self.assertEqual((7, 9), error.location)


class TestForce(unittest.TestCase):
    def test_blocked_instances_are_given_up_on(self) -> None:
        ty = fixture.instance(functions.add_func, fixture.blocked(), builtins.number)
        result = fixture.reduce(ty, force=True)
        self.assertEqual(1, len(result.errors))
        self.assertIsInstance(result.errors[0], UninhabitedTypeFunction)
        self.assertFalse(result.blocked_types)
        instance = get(ty, TypeFunctionInstanceType)
        assert instance is not None
        self.assertIs(TypeFunctionInstanceState.STUCK, instance.state)

    def test_without_force_they_are_blocked(self) -> None:
        blocked = fixture.blocked()
        ty = fixture.instance(functions.add_func, blocked, builtins.number)
        result = fixture.reduce(ty)
        self.assertFalse(result.errors)
        self.assertEqual([blocked], list(result.blocked_types))
        instance = get(ty, TypeFunctionInstanceType)
        assert instance is not None
        self.assertIs(TypeFunctionInstanceState.UNSOLVED, instance.state)


class TestGuessing(unittest.TestCase):
    def test_deep_instances_are_guessed(self) -> None:
        guessing = Fixture(config=DEFAULT_CONFIG.replace(guesser_depth=0))
        ty = guessing.instance(
            functions.add_func, guessing.builtins.number, guessing.builtins.string
        )
        result = guessing.reduce(ty)
        self.assertFalse(result.errors)
        self.assertIs(guessing.builtins.number, follow(ty))

    def test_shallow_instances_are_reduced(self) -> None:
        guessing = Fixture(config=DEFAULT_CONFIG.replace(guesser_depth=1))
        inner = guessing.instance(
            functions.add_func, guessing.builtins.number, guessing.builtins.string
        )
        outer = guessing.instance(functions.not_func, inner)
        result = guessing.reduce(outer)
        self.assertFalse(result.errors)
        self.assertIs(guessing.builtins.number, follow(inner))
        self.assertIs(guessing.builtins.boolean, follow(outer))


class TestLogging(unittest.TestCase):
    def test_transitions_are_logged_when_enabled(self) -> None:
        logged = Fixture(config=DEFAULT_CONFIG.replace(log_type_functions=True))
        ty = logged.instance(
            functions.add_func, logged.builtins.number, logged.builtins.number
        )
        with self.assertLogs('typefun.reducer', 'DEBUG') as logs:
            logged.reduce(ty)
        self.assertTrue(
            any('=>' in message for message in logs.output), logs.output
        )


class TestTermination(unittest.TestCase):
    def mutually_dependent(self) -> tuple[TypeId, TypeId]:
        """A = add<B, number> and B = add<A, number>."""
        a = fixture.blocked()
        b = fixture.instance(functions.add_func, a, builtins.number)
        fixture.arena.emplace_type(
            a, TypeFunctionInstanceType(functions.add_func, [b, builtins.number])
        )
        return a, b

    def test_mutually_dependent_instances_stay_unreduced(self) -> None:
        a, b = self.mutually_dependent()
        collected = collect_instances(a, DEFAULT_CONFIG.recursion_limit)
        assert not isinstance(collected, TooDeep)
        reducer = TypeFunctionReducer(
            collected.types,
            collected.packs,
            collected.should_guess,
            collected.cyclic,
            (1, 1),
            fixture.ctx,
        )
        steps = 0
        while not reducer.done():
            reducer.step()
            steps += 1
            self.assertLess(steps, 10)
        self.assertEqual({a, b}, reducer.irreducible)
        self.assertFalse(reducer.result.errors)
        self.assertIs(a, follow(a))
        self.assertIs(b, follow(b))

    def test_mutually_dependent_instances_through_the_entry_point(self) -> None:
        a, b = self.mutually_dependent()
        result = fixture.reduce(a)
        self.assertFalse(result.errors)
        self.assertFalse(result.reduced_types)
        self.assertEqual({a, b}, set(result.blocked_types))

    def test_reducing_twice_changes_nothing(self) -> None:
        sums = nested_sums(fixture, 3)
        fixture.reduce(sums[-1])
        bound = [follow(ty) for ty in sums]
        result = fixture.reduce(sums[-1])
        self.assertFalse(result.reduced_types)
        self.assertFalse(result.blocked_types)
        self.assertFalse(result.errors)
        self.assertFalse(result.messages)
        self.assertEqual(bound, [follow(ty) for ty in sums])
