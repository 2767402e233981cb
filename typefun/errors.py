from __future__ import annotations

from typing import TYPE_CHECKING

from typefun.location import NO_LOCATION, Location

if TYPE_CHECKING:
    from typefun.types import TypeId, TypePackId


class StaticAnalysisError(Exception):
    """A diagnostic produced by a reduction run.

    These are recorded in reduction results rather than raised."""

    def __init__(self, message: str, location: Location = NO_LOCATION) -> None:
        super().__init__(message)
        self.message = message
        self.location = location

    def set_location_if_missing(self, location: Location) -> None:
        if self.location == NO_LOCATION:
            self.location = location

    def __str__(self) -> str:
        return '{} at {}'.format(self.message, self.location)

    def __repr__(self) -> str:
        return f'{type(self).__name__}({self.message!r}, {self.location!r})'


class UninhabitedTypeFunction(StaticAnalysisError):
    def __init__(self, ty: TypeId, location: Location = NO_LOCATION) -> None:
        super().__init__(format_uninhabited_type_function_error(ty), location)
        self.ty = ty


class UninhabitedTypePackFunction(StaticAnalysisError):
    def __init__(
        self, tp: TypePackId, location: Location = NO_LOCATION
    ) -> None:
        super().__init__(
            format_uninhabited_type_pack_function_error(tp), location
        )
        self.tp = tp


class UserDefinedTypeFunctionError(StaticAnalysisError):
    pass


class InternalError(StaticAnalysisError):
    pass


class CodeTooComplex(StaticAnalysisError):
    def __init__(self, location: Location = NO_LOCATION) -> None:
        super().__init__(format_code_too_complex_error(), location)


class InternalCompilerError(RuntimeError):
    """Raised when a collaborator hands the engine an inconsistent graph."""

    def __init__(self, message: str, module_name: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.module_name = module_name

    def __str__(self) -> str:
        if self.module_name is None:
            return self.message
        return f'{self.message} (in module {self.module_name})'


class RecursionLimitException(Exception):
    pass


# These derive from BaseException so that `except Exception` in a user type
# function cannot swallow an interrupt.
class TimeLimitError(BaseException):
    def __init__(self, module_name: str | None = None) -> None:
        super().__init__(module_name)
        self.module_name = module_name


class UserCancelError(BaseException):
    def __init__(self, module_name: str | None = None) -> None:
        super().__init__(module_name)
        self.module_name = module_name


class SandboxViolationError(Exception):
    """A user type function uses a construct the sandbox does not allow."""

    def __init__(self, message: str, line: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.line = line

    def __str__(self) -> str:
        if self.line is None:
            return self.message
        return f'{self.message} (line {self.line})'


class SerializationError(Exception):
    pass


def format_uninhabited_type_function_error(ty: TypeId) -> str:
    from typefun.types import to_string

    return f'Type function instance {to_string(ty)} is uninhabited'


def format_uninhabited_type_pack_function_error(tp: TypePackId) -> str:
    from typefun.types import to_string

    return f'Type pack function instance {to_string(tp)} is uninhabited'


def format_code_too_complex_error() -> str:
    return 'Code is too complex to typecheck! Consider simplifying the code around this area'


def format_foreign_arena_error(ty: TypeId | TypePackId) -> str:
    return (
        f'Type function reduction tried to mutate a type ({ty!r}) owned by '
        'another arena'
    )


def format_wrong_arity_error(name: str) -> str:
    return (
        f'{name} type function: encountered a type function instance '
        'without the required argument structure'
    )


def format_function_error(name: str, message: str) -> str:
    return f"'{name}' type function errored at runtime: {message}"


def format_non_type_return_error(name: str) -> str:
    return f"'{name}' type function: returned a non-type value"


def format_compile_error(name: str, message: str) -> str:
    return (
        f"'{name}' type function failed to compile with error message: "
        f'{message}'
    )


def format_not_found_error(name: str) -> str:
    return f"Could not find '{name}' type function in the global scope"


def format_not_serializable_error(description: str) -> str:
    return (
        f'Argument of type {description} is not currently serializable by '
        'type functions'
    )


def format_timed_out_error(name: str) -> str:
    return f"'{name}' type function: timed out"


def format_cancelled_error(name: str) -> str:
    return f"'{name}' type function: evaluation was cancelled"


def format_not_enough_arguments_error() -> str:
    return 'not enough arguments to call'


def format_alias_reduction_error(error: StaticAnalysisError) -> str:
    return f'failed to reduce type function with: {error.message}'
