import threading
import time
import unittest

from typefun.context import CancellationToken, TypeCheckLimits
from typefun.errors import (
    InternalCompilerError,
    UninhabitedTypeFunction,
    UserDefinedTypeFunctionError,
)
from typefun.tests.fixtures import Fixture, error_messages
from typefun.types import (
    GenericTypeDefinition,
    TableType,
    TypeFun,
    TypeId,
    follow,
    get,
    to_string,
)

fixture = Fixture()
builtins = fixture.builtins
functions = fixture.functions

IDENTITY = '''\
    def identity(t):
        return t
'''


def reduced(ty: TypeId, on: Fixture = fixture) -> TypeId:
    result = on.reduce(ty)
    assert not result.errors, result.errors
    return follow(ty)


class TestEvaluation(unittest.TestCase):
    def test_identity(self) -> None:
        identity = fixture.definition('identity', IDENTITY)
        ty = fixture.user_instance(identity, builtins.number)
        self.assertIs(builtins.number, reduced(ty))

    def test_definitions_are_compiled_once(self) -> None:
        identity = fixture.definition('identity', IDENTITY)
        first = fixture.user_instance(identity, builtins.number)
        second = fixture.user_instance(identity, builtins.string)
        reduced(first)
        registered = fixture.ctx.runtime.lookup(identity)
        reduced(second)
        self.assertIs(registered, fixture.ctx.runtime.lookup(identity))
        self.assertIs(builtins.string, follow(second))

    def test_building_tables(self) -> None:
        source = '''\
            def make(t):
                return types.newtable({'x': t})
        '''
        ty = fixture.user_instance(fixture.definition('make', source), builtins.number)
        table = get(reduced(ty), TableType)
        assert table is not None
        self.assertTrue(table.props['x'].is_shared)
        self.assertIs(builtins.number, table.props['x'].read_ty)

    def test_inspecting_arguments(self) -> None:
        source = '''\
            def options(t):
                if t.is_('union'):
                    return types.unionof(*reversed(t.components()))
                return t
        '''
        ty = fixture.user_instance(
            fixture.definition('options', source),
            fixture.union(builtins.number, builtins.string),
        )
        self.assertEqual('string | number', to_string(reduced(ty)))

    def test_printed_output(self) -> None:
        source = '''\
            def noisy(t):
                print('hello', t.tag)
                return t
        '''
        ty = fixture.user_instance(
            fixture.definition('noisy', source), builtins.number
        )
        result = fixture.reduce(ty)
        self.assertFalse(result.errors)
        self.assertEqual(['hello number'], [m.message for m in result.messages])
        self.assertIsInstance(result.messages[0], UserDefinedTypeFunctionError)
        self.assertEqual((1, 1), result.messages[0].location)


class TestFailures(unittest.TestCase):
    def reduce_failing(self, name: str, source: str, on: Fixture = fixture):
        ty = on.user_instance(on.definition(name, source), on.builtins.number)
        result = on.reduce(ty)
        self.assertEqual(2, len(result.errors))
        self.assertIsInstance(result.errors[0], UserDefinedTypeFunctionError)
        self.assertIsInstance(result.errors[1], UninhabitedTypeFunction)
        self.assertIs(ty, follow(ty))
        return error_messages(result)[0]

    def test_runtime_errors(self) -> None:
        source = '''\
            def f(t):
                raise ValueError('bad')
        '''
        self.assertEqual(
            "'f' type function errored at runtime: <type function f>:2: bad",
            self.reduce_failing('f', source),
        )

    def test_non_type_results(self) -> None:
        source = '''\
            def f(t):
                return 5
        '''
        self.assertEqual(
            "'f' type function: returned a non-type value",
            self.reduce_failing('f', source),
        )

    def test_syntax_errors(self) -> None:
        message = self.reduce_failing('f', 'def f(t) return t\n')
        self.assertTrue(
            message.startswith(
                "'f' type function failed to compile with error message: "
            ),
            message,
        )

    def test_sandbox_violations(self) -> None:
        sources = {
            'imports': '''\
                def f(t):
                    import os
                    return t
            ''',
            'attribute': '''\
                def f(t):
                    return t.__class__
            ''',
        }
        for name, source in sources.items():
            with self.subTest(name):
                message = self.reduce_failing('f', source)
                self.assertIn('failed to compile', message)

    def test_timeouts(self) -> None:
        late = Fixture(limits=TypeCheckLimits(finish_time=time.monotonic() - 1))
        self.assertEqual(
            "'identity' type function: timed out",
            self.reduce_failing('identity', IDENTITY, late),
        )

    def reduce_cancelled_while_running(self, source: str) -> tuple[str, float]:
        token = CancellationToken()
        cancelled = Fixture(limits=TypeCheckLimits(cancellation_token=token))
        timer = threading.Timer(0.2, token.cancel)
        start = time.monotonic()
        timer.start()
        try:
            message = self.reduce_failing('spin', source, cancelled)
        finally:
            timer.cancel()
        return message, time.monotonic() - start

    def test_cancellation(self) -> None:
        source = '''\
            def spin(t):
                while True:
                    pass
        '''
        message, elapsed = self.reduce_cancelled_while_running(source)
        self.assertEqual("'spin' type function: evaluation was cancelled", message)
        self.assertLess(elapsed, 10)

    def test_cancellation_inside_a_builtin(self) -> None:
        source = '''\
            def spin(t):
                return sum(range(10 ** 9))
        '''
        message, elapsed = self.reduce_cancelled_while_running(source)
        self.assertEqual("'spin' type function: evaluation was cancelled", message)
        self.assertLess(elapsed, 10)

    def test_oversized_values(self) -> None:
        for expression in ("'a' * 10 ** 10", '[0] * 10 ** 9', '2 ** 10 ** 9'):
            with self.subTest(expression):
                source = f'''\
                    def f(t):
                        x = {expression}
                        return t
                '''
                message = self.reduce_failing('f', source)
                self.assertIn('too large', message)

    def test_unserializable_arguments(self) -> None:
        identity = fixture.definition('identity', IDENTITY)
        ty = fixture.user_instance(identity, fixture.free())
        result = fixture.reduce(ty)
        self.assertIn(
            'is not currently serializable by type functions',
            error_messages(result)[0],
        )

    def test_expired_modules(self) -> None:
        class Owner:
            pass

        owner = Owner()
        ty = fixture.user_instance(
            fixture.definition('identity', IDENTITY),
            builtins.number,
            owner=owner,
        )
        del owner
        with self.assertRaises(InternalCompilerError):
            fixture.reduce(ty)


class TestEvaluationPolicy(unittest.TestCase):
    def test_disabled_evaluation(self) -> None:
        disabled = Fixture(allow_evaluation=False)
        ty = disabled.user_instance(
            disabled.definition('identity', IDENTITY), disabled.builtins.number
        )
        self.assertIs(disabled.builtins.error, reduced(ty, disabled))

    def test_definitions_with_errors(self) -> None:
        broken = fixture.definition('identity', IDENTITY, has_errors=True)
        ty = fixture.user_instance(broken, builtins.number)
        self.assertIs(builtins.error, reduced(ty))

    def test_blocked_arguments(self) -> None:
        blocked = fixture.blocked()
        ty = fixture.user_instance(
            fixture.definition('identity', IDENTITY),
            fixture.table({'x': blocked}),
        )
        result = fixture.reduce(ty)
        self.assertEqual([blocked], list(result.blocked_types))
        self.assertIs(ty, follow(ty))

    def test_unscoped_generic_arguments(self) -> None:
        ty = fixture.user_instance(
            fixture.definition('identity', IDENTITY), fixture.generic()
        )
        result = fixture.reduce(ty)
        self.assertEqual([ty], list(result.irreducible_types))
        self.assertFalse(result.errors)


class TestEnvironment(unittest.TestCase):
    def test_simple_aliases(self) -> None:
        source = '''\
            def f(t):
                return Num
        '''
        ty = fixture.user_instance(
            fixture.definition('f', source),
            builtins.string,
            aliases={'Num': TypeFun(builtins.number)},
        )
        self.assertIs(builtins.number, reduced(ty))

    def test_parameterized_aliases(self) -> None:
        t = fixture.generic()
        pair = TypeFun(
            fixture.table({'first': t, 'second': t}),
            [GenericTypeDefinition(t)],
        )
        source = '''\
            def f(t):
                return Pair(t)
        '''
        ty = fixture.user_instance(
            fixture.definition('f', source),
            builtins.number,
            aliases={'Pair': pair},
        )
        self.assertEqual(
            '{ first: number, second: number }', to_string(reduced(ty))
        )

    def test_aliases_reduce_their_type_functions(self) -> None:
        t = fixture.generic()
        total = TypeFun(
            fixture.instance(functions.add_func, t, builtins.number),
            [GenericTypeDefinition(t)],
        )
        source = '''\
            def f(t):
                return Sum(t)
        '''
        ty = fixture.user_instance(
            fixture.definition('f', source),
            builtins.number,
            aliases={'Sum': total},
        )
        self.assertIs(builtins.number, reduced(ty))

    def test_output_around_nested_evaluations(self) -> None:
        inner = fixture.definition(
            'inner',
            '''\
            def inner(t):
                print('inner')
                return t
            ''',
        )
        t = fixture.generic()
        wrap = TypeFun(fixture.user_instance(inner, t), [GenericTypeDefinition(t)])
        source = '''\
            def outer(t):
                print('before')
                wrapped = Wrap(t)
                print('after')
                return wrapped
        '''
        ty = fixture.user_instance(
            fixture.definition('outer', source),
            builtins.number,
            aliases={'Wrap': wrap},
        )
        result = fixture.reduce(ty)
        self.assertFalse(result.errors)
        self.assertEqual(
            ['before', 'inner', 'after'], [m.message for m in result.messages]
        )
        self.assertIs(builtins.number, follow(ty))

    def test_alias_arity(self) -> None:
        t = fixture.generic()
        pair = TypeFun(fixture.table({'first': t}), [GenericTypeDefinition(t)])
        source = '''\
            def f(t):
                return Pair()
        '''
        ty = fixture.user_instance(
            fixture.definition('f', source),
            builtins.number,
            aliases={'Pair': pair},
        )
        result = fixture.reduce(ty)
        self.assertIn('not enough arguments to call', error_messages(result)[0])

    def test_peer_functions(self) -> None:
        helper = fixture.definition(
            'helper',
            '''\
            def helper(t):
                return types.optional(t)
            ''',
        )
        source = '''\
            def f(t):
                return helper(t)
        '''
        ty = fixture.user_instance(
            fixture.definition('f', source),
            builtins.number,
            functions={'helper': helper},
        )
        self.assertEqual('number | nil', to_string(reduced(ty)))

    def test_peers_with_errors(self) -> None:
        helper = fixture.definition('helper', IDENTITY, has_errors=True)
        ty = fixture.user_instance(
            fixture.definition('identity', IDENTITY),
            builtins.number,
            functions={'helper': helper},
        )
        self.assertIs(builtins.error, reduced(ty))
