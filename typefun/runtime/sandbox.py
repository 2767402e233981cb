"""Compiling and running user type functions in a restricted environment.

User source is checked before it is compiled: it must be a single function
definition, and may not import, declare globals, reach for underscore
attributes or dunder names, or catch every exception. The compiled module
runs with an allow-listed set of builtins, some of them wrapped so that
long iterations inside a single builtin call still check the limits, and
the operators that can build huge values in one step are bounded. While a
user function runs, a trace function polls the type checking limits and
aborts the call once the deadline passes or cancellation is requested."""

from __future__ import annotations

import ast
import builtins
import functools
import sys
import types
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Callable, Iterable, Iterator, Mapping

from typefun.errors import (
    SandboxViolationError,
    TimeLimitError,
    UserCancelError,
)

if TYPE_CHECKING:
    from typefun.context import TypeCheckLimits
    from typefun.types import TypeFunctionDefinition

_SAFE_BUILTIN_NAMES = (
    'abs',
    'all',
    'any',
    'bool',
    'dict',
    'enumerate',
    'filter',
    'float',
    'int',
    'isinstance',
    'len',
    'list',
    'map',
    'max',
    'min',
    'range',
    'repr',
    'reversed',
    'set',
    'sorted',
    'str',
    'sum',
    'tuple',
    'zip',
    'Exception',
    'KeyError',
    'IndexError',
    'LookupError',
    'RuntimeError',
    'TypeError',
    'ValueError',
)

# Frame and code objects lead back into the host, and format strings can
# name attributes the validator never sees.
_FORBIDDEN_ATTRIBUTES = frozenset(
    {
        'ag_await',
        'ag_code',
        'ag_frame',
        'cr_await',
        'cr_code',
        'cr_frame',
        'f_back',
        'f_builtins',
        'f_code',
        'f_globals',
        'f_locals',
        'f_trace',
        'format',
        'format_map',
        'gi_code',
        'gi_frame',
        'gi_yieldfrom',
        'tb_frame',
        'tb_next',
        # Padding by an arbitrary width is a single builtin call.
        'center',
        'expandtabs',
        'ljust',
        'rjust',
        'zfill',
    }
)

MAX_SEQUENCE_LENGTH = 1 << 20
MAX_INTEGER_BITS = 1 << 16
# Items iterated between checks of the limits.
_POLL_INTERVAL = 256

_active_check: ContextVar[Callable[[], None] | None] = ContextVar(
    'sandbox_check', default=None
)


def _poll() -> None:
    check = _active_check.get()
    if check is not None:
        check()


def _checked[T](iterable: Iterable[T]) -> Iterator[T]:
    for count, item in enumerate(iterable):
        if not count % _POLL_INTERVAL:
            _poll()
        yield item


class _CheckedRange:
    """`range`, except that iterating it checks the limits."""

    def __init__(self, *args: int) -> None:
        self._range = range(*args)

    def __iter__(self) -> Iterator[int]:
        return _checked(self._range)

    def __reversed__(self) -> Iterator[int]:
        return _checked(reversed(self._range))

    def __len__(self) -> int:
        return len(self._range)

    def __getitem__(self, index: int | slice) -> object:
        item = self._range[index]
        if isinstance(item, range):
            checked = _CheckedRange.__new__(_CheckedRange)
            checked._range = item
            return checked
        return item

    def __contains__(self, value: object) -> bool:
        return value in self._range

    def __repr__(self) -> str:
        return repr(self._range)


def _consuming(function: Callable[..., object]) -> Callable[..., object]:
    """Wrap a builtin that exhausts the iterable given as its first argument.

    `max` and `min` compare their positional arguments directly when given
    more than one."""

    @functools.wraps(function)
    def wrapper(*args: object, **kwargs: object) -> object:
        if len(args) == 1 or function not in (max, min):
            if args:
                args = (_checked(args[0]), *args[1:])  # type: ignore
        return function(*args, **kwargs)

    return wrapper


def _checked_mul(left: object, right: object) -> object:
    for sequence, count in ((left, right), (right, left)):
        if isinstance(sequence, (str, bytes, list, tuple)) and isinstance(
            count, int
        ):
            if len(sequence) * count > MAX_SEQUENCE_LENGTH:
                raise ValueError('sequence repetition is too large')
    if isinstance(left, int) and isinstance(right, int):
        if left.bit_length() + right.bit_length() > MAX_INTEGER_BITS:
            raise ValueError('integer multiplication is too large')
    return left * right  # type: ignore


def _checked_pow(base: object, exponent: object) -> object:
    if isinstance(base, int) and isinstance(exponent, int) and exponent > 0:
        if (abs(base).bit_length() - 1) * exponent > MAX_INTEGER_BITS:
            raise ValueError('integer power is too large')
    return base**exponent  # type: ignore


def _checked_lshift(value: object, shift: object) -> object:
    if isinstance(value, int) and isinstance(shift, int):
        if value.bit_length() + shift > MAX_INTEGER_BITS:
            raise ValueError('integer shift is too large')
    return value << shift  # type: ignore


_CHECKED_OPERATORS: dict[type[ast.operator], str] = {
    ast.Mult: '__checked_mul',
    ast.Pow: '__checked_pow',
    ast.LShift: '__checked_lshift',
}
_OPERATOR_HELPERS: Mapping[str, object] = types.MappingProxyType(
    {
        '__checked_mul': _checked_mul,
        '__checked_pow': _checked_pow,
        '__checked_lshift': _checked_lshift,
    }
)


def _safe_builtins() -> dict[str, object]:
    safe = {name: getattr(builtins, name) for name in _SAFE_BUILTIN_NAMES}
    safe['range'] = _CheckedRange
    for name in ('all', 'any', 'max', 'min', 'sorted', 'sum'):
        safe[name] = _consuming(safe[name])  # type: ignore
    return safe


SAFE_BUILTINS: Mapping[str, object] = types.MappingProxyType(_safe_builtins())


def filename_for(name: str) -> str:
    return f'<type function {name}>'


class SandboxValidator(ast.NodeVisitor):
    def __init__(self, name: str) -> None:
        self._name = name

    def _reject(self, node: ast.AST, message: str) -> None:
        raise SandboxViolationError(message, getattr(node, 'lineno', None))

    def visit_Module(self, node: ast.Module) -> None:
        if len(node.body) != 1 or not isinstance(
            node.body[0], ast.FunctionDef
        ):
            self._reject(
                node,
                'a type function must be a single function definition',
            )
        definition = node.body[0]
        assert isinstance(definition, ast.FunctionDef)
        if definition.name != self._name:
            self._reject(
                definition,
                f'expected a definition of {self._name!r}, found '
                f'{definition.name!r}',
            )
        if definition.decorator_list:
            self._reject(definition, 'type functions cannot be decorated')
        self.generic_visit(node)

    def visit_Import(self, node: ast.Import) -> None:
        self._reject(node, 'imports are not allowed in type functions')

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        self._reject(node, 'imports are not allowed in type functions')

    def visit_Global(self, node: ast.Global) -> None:
        self._reject(node, 'global declarations are not allowed')

    def visit_Nonlocal(self, node: ast.Nonlocal) -> None:
        self._reject(node, 'nonlocal declarations are not allowed')

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        self._reject(node, 'classes cannot be defined in type functions')

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        self._reject(node, 'type functions cannot be asynchronous')

    def visit_Yield(self, node: ast.Yield) -> None:
        self._reject(node, 'type functions cannot be generators')

    def visit_YieldFrom(self, node: ast.YieldFrom) -> None:
        self._reject(node, 'type functions cannot be generators')

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith('_') or node.attr in _FORBIDDEN_ATTRIBUTES:
            self._reject(
                node, f'access to attribute {node.attr!r} is not allowed'
            )
        self.generic_visit(node)

    def visit_AugAssign(self, node: ast.AugAssign) -> None:
        if type(node.op) in _CHECKED_OPERATORS and not isinstance(
            node.target, ast.Name
        ):
            self._reject(
                node, 'augmented arithmetic is only allowed on plain names'
            )
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if node.id.startswith('__'):
            self._reject(node, f'use of name {node.id!r} is not allowed')

    def visit_ExceptHandler(self, node: ast.ExceptHandler) -> None:
        if node.type is None:
            self._reject(node, 'bare except clauses are not allowed')
        for child in ast.walk(node.type):
            if isinstance(child, ast.Name) and child.id == 'BaseException':
                self._reject(node, 'catching BaseException is not allowed')
        self.generic_visit(node)


def validate(source: str, name: str) -> ast.Module:
    """Parse `source` and check it against the sandbox rules."""
    module = ast.parse(source, filename_for(name))
    SandboxValidator(name).visit(module)
    return module


class OperatorLimiter(ast.NodeTransformer):
    """Routes the operators that can build huge values in one step through
    helpers that bound the size of the result.

    Runs after validation, so user code cannot name the helpers itself."""

    def _call(
        self, op: ast.operator, left: ast.expr, right: ast.expr
    ) -> ast.Call:
        helper = ast.Name(_CHECKED_OPERATORS[type(op)], ast.Load())
        return ast.Call(helper, [left, right], [])

    def visit_BinOp(self, node: ast.BinOp) -> ast.AST:
        self.generic_visit(node)
        if type(node.op) not in _CHECKED_OPERATORS:
            return node
        call = self._call(node.op, node.left, node.right)
        return ast.copy_location(call, node)

    def visit_AugAssign(self, node: ast.AugAssign) -> ast.AST:
        self.generic_visit(node)
        if type(node.op) not in _CHECKED_OPERATORS:
            return node
        assert isinstance(node.target, ast.Name)
        current = ast.Name(node.target.id, ast.Load())
        target = ast.Name(node.target.id, ast.Store())
        value = self._call(node.op, current, node.value)
        return ast.copy_location(ast.Assign([target], value), node)


def load(
    definition: TypeFunctionDefinition, extra_globals: Mapping[str, object]
) -> tuple[types.FunctionType | None, dict[str, object]]:
    """Compile and run the module holding `definition`.

    Returns the function the module defines (None if it defines nothing
    under the expected name) and the module's private globals. Syntax
    errors and sandbox violations propagate."""
    module = validate(definition.source, definition.name)
    module = ast.fix_missing_locations(OperatorLimiter().visit(module))
    code = compile(module, filename_for(definition.name), 'exec')
    namespace: dict[str, object] = {'__builtins__': dict(SAFE_BUILTINS)}
    namespace.update(_OPERATOR_HELPERS)
    namespace.update(extra_globals)
    exec(code, namespace)
    function = namespace.get(definition.name)
    if not isinstance(function, types.FunctionType):
        return None, namespace
    return function, namespace


@contextmanager
def interrupt(
    limits: TypeCheckLimits, module_name: str | None = None
) -> Iterator[None]:
    """Abort the enclosed call when the deadline passes or on cancellation.

    Only frames running sandboxed code are traced line by line; library
    frames are checked when they are entered."""

    def check() -> None:
        if limits.deadline_passed():
            raise TimeLimitError(module_name)
        if limits.cancelled():
            raise UserCancelError(module_name)

    def trace_lines(frame: types.FrameType, event: str, arg: object):
        if event == 'line':
            check()
        return trace_lines

    def trace_calls(frame: types.FrameType, event: str, arg: object):
        if event != 'call':
            return None
        check()
        if frame.f_code.co_filename.startswith('<type function '):
            return trace_lines
        return None

    previous = sys.gettrace()
    token = _active_check.set(check)
    sys.settrace(trace_calls)
    try:
        yield
    finally:
        sys.settrace(previous)
        _active_check.reset(token)


def describe_failure(error: Exception) -> str:
    """The message of an error raised by user code, with the line of the
    innermost sandboxed frame it passed through."""
    line = None
    name = None
    traceback = error.__traceback__
    while traceback is not None:
        code = traceback.tb_frame.f_code
        if code.co_filename.startswith('<type function '):
            name = code.co_filename
            line = traceback.tb_lineno
        traceback = traceback.tb_next
    message = str(error) or type(error).__name__
    if line is None:
        return message
    return f'{name}:{line}: {message}'
