"""The type graph.

Type and type pack nodes live in slots owned by a TypeArena. A TypeId or
TypePackId is a handle naming one slot; handles are unique per slot, so they
compare and hash by identity. Binding a node to another node writes a
BoundType (or BoundTypePack) variant into the node's slot, which `follow`
then walks.
"""

from __future__ import annotations

import enum
import weakref
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Iterable,
    Iterator,
    Sequence,
    Union,
    overload,
)

from typefun.errors import InternalCompilerError
from typefun.set_once import SetOnce

if TYPE_CHECKING:
    from typefun.location import Location


class TypeId:
    __slots__ = ('owning_arena', 'index', '__weakref__')

    def __init__(self, owning_arena: TypeArena, index: int) -> None:
        self.owning_arena = owning_arena
        self.index = index

    @property
    def ty(self) -> TypeVariant:
        return self.owning_arena._types[self.index]

    def __repr__(self) -> str:
        return f'TypeId({self.owning_arena.name}#{self.index})'

    def __str__(self) -> str:
        return to_string(self)


class TypePackId:
    __slots__ = ('owning_arena', 'index', '__weakref__')

    def __init__(self, owning_arena: TypeArena, index: int) -> None:
        self.owning_arena = owning_arena
        self.index = index

    @property
    def ty(self) -> TypePackVariant:
        return self.owning_arena._packs[self.index]

    def __repr__(self) -> str:
        return f'TypePackId({self.owning_arena.name}#{self.index})'

    def __str__(self) -> str:
        return to_string(self)


class TypeArena:
    """Allocates and owns type and type pack nodes."""

    def __init__(self, name: str = 'arena') -> None:
        self.name = name
        self.frozen = False
        self._types: list[TypeVariant] = []
        self._type_ids: list[TypeId] = []
        self._packs: list[TypePackVariant] = []
        self._pack_ids: list[TypePackId] = []

    def add_type(self, ty: TypeVariant) -> TypeId:
        self._check_not_frozen()
        type_id = TypeId(self, len(self._types))
        self._types.append(ty)
        self._type_ids.append(type_id)
        return type_id

    def add_type_pack(self, tp: TypePackVariant) -> TypePackId:
        self._check_not_frozen()
        pack_id = TypePackId(self, len(self._packs))
        self._packs.append(tp)
        self._pack_ids.append(pack_id)
        return pack_id

    def add_pack(
        self, head: Iterable[TypeId] = (), tail: TypePackId | None = None
    ) -> TypePackId:
        return self.add_type_pack(TypePack(list(head), tail))

    def owns(self, ty: TypeId | TypePackId) -> bool:
        return ty.owning_arena is self

    def emplace_type(self, ty: TypeId, variant: TypeVariant) -> None:
        self._check_owned(ty)
        self._types[ty.index] = variant

    def emplace_type_pack(
        self, tp: TypePackId, variant: TypePackVariant
    ) -> None:
        self._check_owned(tp)
        self._packs[tp.index] = variant

    def bind_type(self, ty: TypeId, target: TypeId) -> None:
        if follow(target) is ty:
            raise InternalCompilerError(
                f'binding {ty!r} to itself would form a bound cycle'
            )
        self.emplace_type(ty, BoundType(target))

    def bind_type_pack(self, tp: TypePackId, target: TypePackId) -> None:
        if follow(target) is tp:
            raise InternalCompilerError(
                f'binding {tp!r} to itself would form a bound cycle'
            )
        self.emplace_type_pack(tp, BoundTypePack(target))

    def freeze(self) -> None:
        self.frozen = True

    def type_ids(self) -> Iterator[TypeId]:
        return iter(list(self._type_ids))

    def type_pack_ids(self) -> Iterator[TypePackId]:
        return iter(list(self._pack_ids))

    def __len__(self) -> int:
        return len(self._types) + len(self._packs)

    def __repr__(self) -> str:
        return f'TypeArena({self.name!r})'

    def _check_not_frozen(self) -> None:
        if self.frozen:
            raise InternalCompilerError(
                f'cannot modify the frozen arena {self.name!r}'
            )

    def _check_owned(self, node: TypeId | TypePackId) -> None:
        if node.owning_arena is not self:
            raise InternalCompilerError(
                f'{node!r} is not owned by arena {self.name!r}'
            )
        self._check_not_frozen()


class PrimitiveKind(enum.Enum):
    NIL = 'nil'
    BOOLEAN = 'boolean'
    NUMBER = 'number'
    STRING = 'string'
    THREAD = 'thread'
    BUFFER = 'buffer'
    FUNCTION = 'function'
    TABLE = 'table'


class TypeFunctionKind(enum.Enum):
    NOT = 'not'
    LEN = 'len'
    UNM = 'unm'
    ADD = 'add'
    SUB = 'sub'
    MUL = 'mul'
    DIV = 'div'
    IDIV = 'idiv'
    POW = 'pow'
    MOD = 'mod'
    CONCAT = 'concat'
    AND = 'and'
    OR = 'or'
    LT = 'lt'
    LE = 'le'
    EQ = 'eq'
    REFINE = 'refine'
    SINGLETON = 'singleton'
    UNION = 'union'
    INTERSECT = 'intersect'
    KEYOF = 'keyof'
    RAWKEYOF = 'rawkeyof'
    INDEX = 'index'
    RAWGET = 'rawget'
    SETMETATABLE = 'setmetatable'
    GETMETATABLE = 'getmetatable'
    WEAKOPTIONAL = 'weakoptional'
    USER = 'user'


class TypeFunctionInstanceState(enum.Enum):
    # Reduction has not settled on an answer.
    UNSOLVED = 'unsolved'
    # Reduction produced a best-effort answer that should not be retried.
    SOLVED = 'solved'
    # Reduction failed for good.
    STUCK = 'stuck'


@dataclass(frozen=True)
class TypeFunction:
    name: str
    kind: TypeFunctionKind
    # Whether reduction may proceed while an argument is a generic.
    can_reduce_generics: bool = False

    def __str__(self) -> str:
        return self.name


@dataclass(eq=False)
class TypeFunctionDefinition:
    """The compiled body of a user type function.

    `source` is the Python text of a single function definition named
    `name`."""

    name: str
    source: str
    has_errors: bool = False
    location: Location | None = None


@dataclass(eq=False)
class GenericTypeDefinition:
    ty: TypeId
    default: TypeId | None = None


@dataclass(eq=False)
class GenericTypePackDefinition:
    tp: TypePackId
    default: TypePackId | None = None


@dataclass(eq=False)
class TypeFun:
    """A type alias: `type Name<params...> = type`."""

    type: TypeId
    type_params: list[GenericTypeDefinition] = field(default_factory=list)
    type_pack_params: list[GenericTypePackDefinition] = field(
        default_factory=list
    )

    @property
    def is_simple(self) -> bool:
        return not self.type_params and not self.type_pack_params


@dataclass(eq=False)
class UserDefinedFunctionData:
    """What a user type function instance needs to run.

    The owner is held weakly; an instance whose module has gone away can no
    longer be evaluated. The environment maps names to the visible
    definitions together with the lexical depth they were declared at."""

    owner: weakref.ref[Any]
    definition: TypeFunctionDefinition | None
    environment_functions: dict[str, tuple[TypeFunctionDefinition, int]] = (
        field(default_factory=dict)
    )
    environment_aliases: dict[str, tuple[TypeFun, int]] = field(
        default_factory=dict
    )


@dataclass(eq=False)
class Property:
    read_ty: TypeId | None = None
    write_ty: TypeId | None = None

    @classmethod
    def rw(cls, ty: TypeId) -> Property:
        return cls(ty, ty)

    @classmethod
    def readonly(cls, ty: TypeId) -> Property:
        return cls(ty, None)

    @classmethod
    def writeonly(cls, ty: TypeId) -> Property:
        return cls(None, ty)

    @property
    def is_shared(self) -> bool:
        return self.read_ty is not None and self.read_ty is self.write_ty


@dataclass(eq=False)
class TableIndexer:
    index_type: TypeId
    index_result_type: TypeId


@dataclass(eq=False)
class PrimitiveType:
    kind: PrimitiveKind
    metatable: TypeId | None = None


@dataclass(eq=False)
class SingletonType:
    value: bool | str


@dataclass(eq=False)
class AnyType:
    pass


@dataclass(eq=False)
class UnknownType:
    pass


@dataclass(eq=False)
class NeverType:
    pass


@dataclass(eq=False)
class ErrorType:
    pass


@dataclass(eq=False)
class NoRefineType:
    pass


@dataclass(eq=False)
class FreeType:
    lower_bound: TypeId
    upper_bound: TypeId


@dataclass(eq=False)
class GenericType:
    name: str


@dataclass(eq=False)
class BlockedType:
    pass


@dataclass(eq=False)
class PendingExpansionType:
    name: str


@dataclass(eq=False)
class UnionType:
    options: list[TypeId]


@dataclass(eq=False)
class IntersectionType:
    parts: list[TypeId]


@dataclass(eq=False)
class NegationType:
    ty: TypeId


@dataclass(eq=False)
class TableType:
    props: dict[str, Property] = field(default_factory=dict)
    indexer: TableIndexer | None = None
    name: str | None = None


@dataclass(eq=False)
class MetatableType:
    table: TypeId
    metatable: TypeId


@dataclass(eq=False)
class FunctionType:
    arg_types: TypePackId
    ret_types: TypePackId
    generics: list[TypeId] = field(default_factory=list)
    generic_packs: list[TypePackId] = field(default_factory=list)


@dataclass(eq=False)
class ExternType:
    """A host-provided class type."""

    name: str
    props: dict[str, Property] = field(default_factory=dict)
    parent: TypeId | None = None
    metatable: TypeId | None = None
    indexer: TableIndexer | None = None


class TypeFunctionInstanceType:
    state = SetOnce[TypeFunctionInstanceState](
        TypeFunctionInstanceState.UNSOLVED
    )

    def __init__(
        self,
        function: TypeFunction,
        type_arguments: Sequence[TypeId] = (),
        pack_arguments: Sequence[TypePackId] = (),
        user_func_name: str | None = None,
        user_func_data: UserDefinedFunctionData | None = None,
    ) -> None:
        self.function = function
        self.type_arguments = list(type_arguments)
        self.pack_arguments = list(pack_arguments)
        self.user_func_name = user_func_name
        self.user_func_data = user_func_data

    def __repr__(self) -> str:
        return (
            f'TypeFunctionInstanceType({self.function.name!r}, '
            f'{self.type_arguments!r}, {self.pack_arguments!r})'
        )


@dataclass(eq=False)
class BoundType:
    bound_to: TypeId


@dataclass(eq=False)
class TypePack:
    head: list[TypeId]
    tail: TypePackId | None = None


@dataclass(eq=False)
class VariadicTypePack:
    ty: TypeId


@dataclass(eq=False)
class GenericTypePack:
    name: str


@dataclass(eq=False)
class FreeTypePack:
    pass


@dataclass(eq=False)
class BlockedTypePack:
    pass


class TypeFunctionInstanceTypePack:
    def __init__(
        self,
        function: TypeFunction,
        type_arguments: Sequence[TypeId] = (),
        pack_arguments: Sequence[TypePackId] = (),
    ) -> None:
        self.function = function
        self.type_arguments = list(type_arguments)
        self.pack_arguments = list(pack_arguments)

    def __repr__(self) -> str:
        return (
            f'TypeFunctionInstanceTypePack({self.function.name!r}, '
            f'{self.type_arguments!r}, {self.pack_arguments!r})'
        )


@dataclass(eq=False)
class BoundTypePack:
    bound_to: TypePackId


type TypeVariant = Union[
    PrimitiveType,
    SingletonType,
    AnyType,
    UnknownType,
    NeverType,
    ErrorType,
    NoRefineType,
    FreeType,
    GenericType,
    BlockedType,
    PendingExpansionType,
    UnionType,
    IntersectionType,
    NegationType,
    TableType,
    MetatableType,
    FunctionType,
    ExternType,
    TypeFunctionInstanceType,
    BoundType,
]

type TypePackVariant = Union[
    TypePack,
    VariadicTypePack,
    GenericTypePack,
    FreeTypePack,
    BlockedTypePack,
    TypeFunctionInstanceTypePack,
    BoundTypePack,
]


@overload
def follow(node: TypeId) -> TypeId: ...


@overload
def follow(node: TypePackId) -> TypePackId: ...


def follow(node: TypeId | TypePackId) -> TypeId | TypePackId:
    """Walk the bound chain starting at `node` to its representative.

    The slow pointer trails the fast one at half speed; if they ever meet,
    the chain loops and the graph is corrupt."""
    slow = fast = node
    steps = 0
    while True:
        variant = fast.ty
        if not isinstance(variant, (BoundType, BoundTypePack)):
            return fast
        fast = variant.bound_to
        steps += 1
        if steps % 2 == 0:
            slow = slow.ty.bound_to  # type: ignore
        if fast is slow:
            raise InternalCompilerError(
                f'bound chain starting at {node!r} is cyclic'
            )


def get[T](ty: TypeId, variant: type[T]) -> T | None:
    current = follow(ty).ty
    if isinstance(current, variant):
        return current
    return None


def get_pack[T](tp: TypePackId, variant: type[T]) -> T | None:
    current = follow(tp).ty
    if isinstance(current, variant):
        return current
    return None


def is_primitive(ty: TypeId, kind: PrimitiveKind) -> bool:
    primitive = get(ty, PrimitiveType)
    return primitive is not None and primitive.kind is kind


def is_number(ty: TypeId) -> bool:
    return is_primitive(ty, PrimitiveKind.NUMBER)


def is_string(ty: TypeId) -> bool:
    return is_primitive(ty, PrimitiveKind.STRING)


def is_nil(ty: TypeId) -> bool:
    return is_primitive(ty, PrimitiveKind.NIL)


def is_boolean(ty: TypeId) -> bool:
    return is_primitive(ty, PrimitiveKind.BOOLEAN)


def is_string_singleton(ty: TypeId) -> bool:
    singleton = get(ty, SingletonType)
    return singleton is not None and isinstance(singleton.value, str)


def is_boolean_singleton(ty: TypeId) -> bool:
    singleton = get(ty, SingletonType)
    return singleton is not None and isinstance(singleton.value, bool)


def flatten(tp: TypePackId) -> tuple[list[TypeId], TypePackId | None]:
    """Collect the leading types of a pack and its non-TypePack tail."""
    head: list[TypeId] = []
    seen: set[int] = set()
    tp = follow(tp)
    while isinstance(tp.ty, TypePack):
        if id(tp) in seen:
            break
        seen.add(id(tp))
        pack = tp.ty
        head.extend(pack.head)
        if pack.tail is None:
            return head, None
        tp = follow(pack.tail)
    return head, tp


def extern_is_subclass(ty: TypeId, ancestor: TypeId) -> bool:
    ty = follow(ty)
    ancestor = follow(ancestor)
    seen: set[int] = set()
    while True:
        if ty is ancestor:
            return True
        extern = get(ty, ExternType)
        if extern is None or extern.parent is None or id(ty) in seen:
            return False
        seen.add(id(ty))
        ty = follow(extern.parent)


class BuiltinTypes:
    """Canonical nodes shared by every arena.

    They live in their own frozen arena, so the engine can never bind one of
    them by accident."""

    def __init__(self) -> None:
        self.arena = arena = TypeArena('builtins')
        self.nil = arena.add_type(PrimitiveType(PrimitiveKind.NIL))
        self.boolean = arena.add_type(PrimitiveType(PrimitiveKind.BOOLEAN))
        self.number = arena.add_type(PrimitiveType(PrimitiveKind.NUMBER))
        self.thread = arena.add_type(PrimitiveType(PrimitiveKind.THREAD))
        self.buffer = arena.add_type(PrimitiveType(PrimitiveKind.BUFFER))
        self.function = arena.add_type(PrimitiveType(PrimitiveKind.FUNCTION))
        self.table = arena.add_type(PrimitiveType(PrimitiveKind.TABLE))
        self.any = arena.add_type(AnyType())
        self.unknown = arena.add_type(UnknownType())
        self.never = arena.add_type(NeverType())
        self.error = arena.add_type(ErrorType())
        self.no_refine = arena.add_type(NoRefineType())
        self.true_ = arena.add_type(SingletonType(True))
        self.false_ = arena.add_type(SingletonType(False))
        self.falsy = arena.add_type(UnionType([self.false_, self.nil]))
        self.truthy = arena.add_type(NegationType(self.falsy))
        self.optional_number = arena.add_type(
            UnionType([self.number, self.nil])
        )

        self.empty_pack = arena.add_pack()
        self.any_pack = arena.add_type_pack(VariadicTypePack(self.any))
        self.unknown_pack = arena.add_type_pack(
            VariadicTypePack(self.unknown)
        )
        self.never_pack = arena.add_type_pack(VariadicTypePack(self.never))
        self.error_pack = arena.add_type_pack(VariadicTypePack(self.error))

        # Strings carry a metatable whose __index holds the string library.
        self.string = arena.add_type(PrimitiveType(PrimitiveKind.STRING))
        string_library = {
            name: Property.readonly(
                arena.add_type(
                    FunctionType(
                        arena.add_pack([self.string, *extra_params]),
                        arena.add_pack([result]),
                    )
                )
            )
            for name, extra_params, result in [
                ('len', [], self.number),
                ('lower', [], self.string),
                ('upper', [], self.string),
                ('rep', [self.number], self.string),
                ('sub', [self.number, self.optional_number], self.string),
            ]
        }
        string_index = arena.add_type(
            TableType(string_library, name='stringlib')
        )
        self.string_metatable = arena.add_type(
            TableType({'__index': Property.readonly(string_index)})
        )
        arena.emplace_type(
            self.string,
            PrimitiveType(PrimitiveKind.STRING, self.string_metatable),
        )
        arena.freeze()

    def primitive(self, kind: PrimitiveKind) -> TypeId:
        return getattr(self, kind.value)


def to_string(node: TypeId | TypePackId) -> str:
    """Render a type or pack for diagnostics and logs."""
    return _Printer().render(node)


class _Printer:
    def __init__(self) -> None:
        self._active: list[int] = []

    def render(self, node: TypeId | TypePackId) -> str:
        node = follow(node)
        if id(node) in self._active:
            return '*CYCLE*'
        self._active.append(id(node))
        try:
            if isinstance(node, TypeId):
                return self._type(node.ty)
            return self._pack(node)
        finally:
            self._active.pop()

    def _list(self, nodes: Iterable[TypeId | TypePackId]) -> str:
        return ', '.join(self.render(node) for node in nodes)

    def _type(self, ty: TypeVariant) -> str:
        match ty:
            case PrimitiveType(kind=kind):
                return kind.value
            case SingletonType(value=bool() as value):
                return 'true' if value else 'false'
            case SingletonType(value=value):
                return f'"{value}"'
            case AnyType():
                return 'any'
            case UnknownType():
                return 'unknown'
            case NeverType():
                return 'never'
            case ErrorType():
                return '*error-type*'
            case NoRefineType():
                return '*no-refine*'
            case FreeType(lower_bound=lower, upper_bound=upper):
                return f"'free({self.render(lower)}, {self.render(upper)})"
            case GenericType(name=name):
                return name
            case BlockedType():
                return '*blocked*'
            case PendingExpansionType(name=name):
                return f'*pending-expansion-{name}*'
            case UnionType(options=options):
                return ' | '.join(self._operand(o) for o in options)
            case IntersectionType(parts=parts):
                return ' & '.join(self._operand(p) for p in parts)
            case NegationType(ty=negated):
                return f'~{self._operand(negated)}'
            case TableType():
                return self._table(ty)
            case MetatableType(table=table, metatable=metatable):
                return (
                    f'{{ @metatable {self.render(metatable)}, '
                    f'{self.render(table)} }}'
                )
            case FunctionType():
                generics = ''
                if ty.generics or ty.generic_packs:
                    generics = f'<{self._list([*ty.generics, *ty.generic_packs])}>'
                return (
                    f'{generics}{self.render(ty.arg_types)} -> '
                    f'{self.render(ty.ret_types)}'
                )
            case ExternType(name=name):
                return name
            case TypeFunctionInstanceType():
                name = ty.user_func_name or ty.function.name
                args = self._list([*ty.type_arguments, *ty.pack_arguments])
                return f'{name}<{args}>'
        raise InternalCompilerError(f'cannot print {ty!r}')

    def _operand(self, ty: TypeId) -> str:
        rendered = self.render(ty)
        if isinstance(follow(ty).ty, (UnionType, IntersectionType)):
            return f'({rendered})'
        return rendered

    def _table(self, table: TableType) -> str:
        if table.name is not None and table.name != '':
            return table.name
        entries = []
        for name, prop in table.props.items():
            if prop.is_shared:
                entries.append(f'{name}: {self.render(prop.read_ty)}')  # type: ignore
                continue
            if prop.read_ty is not None:
                entries.append(f'read {name}: {self.render(prop.read_ty)}')
            if prop.write_ty is not None:
                entries.append(f'write {name}: {self.render(prop.write_ty)}')
        if table.indexer is not None:
            entries.append(
                f'[{self.render(table.indexer.index_type)}]: '
                f'{self.render(table.indexer.index_result_type)}'
            )
        if not entries:
            return '{  }'
        return '{ ' + ', '.join(entries) + ' }'

    def _pack(self, tp: TypePackId) -> str:
        match tp.ty:
            case TypePack():
                head, tail = flatten(tp)
                parts = [self.render(ty) for ty in head]
                if tail is not None:
                    parts.append(self._tail(tail))
                return f'({", ".join(parts)})'
            case _:
                return f'({self._tail(tp)})'

    def _tail(self, tp: TypePackId) -> str:
        match tp.ty:
            case VariadicTypePack(ty=ty):
                return f'...{self.render(ty)}'
            case GenericTypePack(name=name):
                return f'{name}...'
            case FreeTypePack():
                return "'free..."
            case BlockedTypePack():
                return '*blocked-tp*'
            case TypeFunctionInstanceTypePack() as instance:
                args = self._list(
                    [*instance.type_arguments, *instance.pack_arguments]
                )
                return f'{instance.function.name}<{args}>...'
            case TypePack():
                return self._pack(tp)
        raise InternalCompilerError(f'cannot print {tp.ty!r}')


def make_union(
    arena: TypeArena, builtins: BuiltinTypes, options: Sequence[TypeId]
) -> TypeId:
    """A union of `options`, collapsing the trivial cases."""
    unique: list[TypeId] = []
    for option in options:
        option = follow(option)
        if option not in unique:
            unique.append(option)
    if not unique:
        return builtins.never
    if len(unique) == 1:
        return unique[0]
    return arena.add_type(UnionType(unique))


def make_intersection(
    arena: TypeArena, builtins: BuiltinTypes, parts: Sequence[TypeId]
) -> TypeId:
    unique: list[TypeId] = []
    for part in parts:
        part = follow(part)
        if part not in unique:
            unique.append(part)
    if not unique:
        return builtins.unknown
    if len(unique) == 1:
        return unique[0]
    return arena.add_type(IntersectionType(unique))
