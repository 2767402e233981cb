"""The runtime that user type functions are registered with and run in."""

from __future__ import annotations

import types
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator

from typefun.errors import (
    SandboxViolationError,
    format_compile_error,
    format_not_found_error,
)
from typefun.logging import get_logger
from typefun.runtime import sandbox
from typefun.runtime.library import TypesLibrary
from typefun.runtime.values import TypeValue

if TYPE_CHECKING:
    from typefun.context import InternalErrorReporter, TypeCheckLimits
    from typefun.types import TypeFunctionDefinition

_logger = get_logger(__name__)


@dataclass(eq=False)
class RegisteredFunction:
    function: types.FunctionType
    # The function's private module globals. Its visible peers and aliases
    # are added here before its first call.
    namespace: dict[str, object]


class TypeFunctionRuntime:
    """Owns every user type function compiled during one check."""

    def __init__(
        self,
        ice: InternalErrorReporter,
        limits: TypeCheckLimits,
        allow_evaluation: bool = True,
    ) -> None:
        self.ice = ice
        self.limits = limits
        # False when the module has errors that make evaluation pointless.
        self.allow_evaluation = allow_evaluation
        # One buffer per evaluation in progress, innermost last.
        self._captures: list[list[str]] = []
        self.library = TypesLibrary()
        self._registry: dict[TypeFunctionDefinition, RegisteredFunction] = {}
        # Functions whose environments have been filled in.
        self.initialized: set[TypeFunctionDefinition] = set()

    def print(self, *values: object, sep: str = ' ') -> None:
        message = sep.join(str(value) for value in values)
        for messages in self._captures:
            messages.append(message)

    @contextmanager
    def capture_output(self) -> Iterator[list[str]]:
        """Collect what is printed until the block exits.

        Output of nested evaluations also reaches the enclosing captures."""
        messages: list[str] = []
        self._captures.append(messages)
        try:
            yield messages
        finally:
            self._captures.pop()

    def register_function(
        self, definition: TypeFunctionDefinition
    ) -> str | None:
        """Compile `definition` once, returning an error message on failure."""
        if not self.allow_evaluation or definition.has_errors:
            return None
        if definition in self._registry:
            return None

        name = definition.name
        try:
            function, namespace = sandbox.load(
                definition, {'types': self.library, 'print': self.print}
            )
        except (SyntaxError, SandboxViolationError) as e:
            _logger.info('type function {} failed to compile: {}', name, e)
            return format_compile_error(name, str(e))
        except Exception as e:
            return format_compile_error(name, sandbox.describe_failure(e))
        if function is None:
            return format_not_found_error(name)

        _logger.debug('registered type function {}', name)
        self._registry[definition] = RegisteredFunction(function, namespace)
        return None

    def lookup(
        self, definition: TypeFunctionDefinition
    ) -> RegisteredFunction | None:
        return self._registry.get(definition)


__all__ = ['RegisteredFunction', 'TypeFunctionRuntime', 'TypeValue']
