"""Type simplification.

The simplifier combines two types under union or intersection when their
relation is easy to decide, and otherwise builds the literal set type. Type
variables (free, generic, blocked, pending and function-instance types)
cannot be decided; meeting one records it as a blocker for the caller.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from typefun.orderedset import InsertionOrderedSet
from typefun.types import (
    AnyType,
    BlockedType,
    BuiltinTypes,
    ErrorType,
    ExternType,
    FreeType,
    FunctionType,
    GenericType,
    IntersectionType,
    MetatableType,
    NegationType,
    NeverType,
    PendingExpansionType,
    PrimitiveKind,
    PrimitiveType,
    Property,
    SingletonType,
    TableType,
    TypeArena,
    TypeFunctionInstanceType,
    TypeId,
    UnionType,
    UnknownType,
    extern_is_subclass,
    follow,
    get,
    is_boolean,
    is_nil,
    is_primitive,
    make_intersection,
    make_union,
)


class Relation(enum.Enum):
    DISJOINT = 'disjoint'
    COINCIDENT = 'coincident'
    # The left type is a proper subset of the right one.
    SUBSET = 'subset'
    SUPERSET = 'superset'
    INTERSECTS = 'intersects'

    def flip(self) -> Relation:
        if self is Relation.SUBSET:
            return Relation.SUPERSET
        if self is Relation.SUPERSET:
            return Relation.SUBSET
        return self


@dataclass
class SimplifyResult:
    result: TypeId
    blocked_types: InsertionOrderedSet[TypeId] = field(
        default_factory=InsertionOrderedSet
    )


def is_type_variable(ty: TypeId) -> bool:
    return isinstance(
        follow(ty).ty,
        (
            FreeType,
            GenericType,
            BlockedType,
            PendingExpansionType,
            TypeFunctionInstanceType,
        ),
    )


def is_approximately_falsy_type(ty: TypeId) -> bool:
    union = get(ty, UnionType)
    if union is None:
        return False
    seen_nil = seen_false = False
    for option in union.options:
        singleton = get(option, SingletonType)
        if is_nil(option):
            seen_nil = True
        elif singleton is not None and singleton.value is False:
            seen_false = True
        else:
            return False
    return seen_nil and seen_false


def is_approximately_truthy_type(ty: TypeId) -> bool:
    negation = get(ty, NegationType)
    return negation is not None and is_approximately_falsy_type(negation.ty)


class TypeSimplifier:
    def __init__(self, builtins: BuiltinTypes, arena: TypeArena) -> None:
        self.builtins = builtins
        self.arena = arena
        self.blocked_types = InsertionOrderedSet[TypeId]()
        self._relating: set[tuple[TypeId, TypeId]] = set()

    def relate(self, left: TypeId, right: TypeId) -> Relation:
        left = follow(left)
        right = follow(right)
        if left is right:
            return Relation.COINCIDENT
        key = (left, right)
        # Cyclic structures are assumed to overlap.
        if key in self._relating:
            return Relation.INTERSECTS
        self._relating.add(key)
        try:
            return self._relate(left, right)
        finally:
            self._relating.discard(key)

    def _relate(self, left: TypeId, right: TypeId) -> Relation:
        lv, rv = left.ty, right.ty

        if isinstance(lv, AnyType):
            return (
                Relation.COINCIDENT
                if isinstance(rv, AnyType)
                else Relation.SUPERSET
            )
        if isinstance(rv, AnyType):
            return Relation.SUBSET
        if isinstance(lv, UnknownType):
            return (
                Relation.COINCIDENT
                if isinstance(rv, UnknownType)
                else Relation.SUPERSET
            )
        if isinstance(rv, UnknownType):
            return Relation.SUBSET
        if isinstance(lv, NeverType):
            return (
                Relation.COINCIDENT
                if isinstance(rv, NeverType)
                else Relation.SUBSET
            )
        if isinstance(rv, NeverType):
            return Relation.SUPERSET
        if isinstance(lv, ErrorType) and isinstance(rv, ErrorType):
            return Relation.COINCIDENT
        if is_type_variable(left) or is_type_variable(right):
            return Relation.INTERSECTS

        match lv:
            case UnionType(options=options):
                return self._relate_union(options, right)
            case IntersectionType(parts=parts):
                return self._relate_intersection(parts, right)
            case NegationType(ty=negated):
                return self._relate_negation(negated, right)
        if isinstance(rv, (UnionType, IntersectionType, NegationType)):
            return self.relate(right, left).flip()

        if isinstance(lv, (ErrorType, ExternType)) or isinstance(
            rv, (ErrorType, ExternType)
        ):
            return self._relate_opaque(left, right)

        match lv, rv:
            case PrimitiveType(kind=lkind), PrimitiveType(kind=rkind):
                return (
                    Relation.COINCIDENT if lkind is rkind else Relation.DISJOINT
                )
            case SingletonType(value=lvalue), SingletonType(value=rvalue):
                if type(lvalue) is type(rvalue) and lvalue == rvalue:
                    return Relation.COINCIDENT
                return Relation.DISJOINT
            case SingletonType(value=value), PrimitiveType(kind=kind):
                return _relate_singleton_to_primitive(value, kind)
            case PrimitiveType(kind=kind), SingletonType(value=value):
                return _relate_singleton_to_primitive(value, kind).flip()
            case TableType() | MetatableType(), PrimitiveType(kind=kind):
                if kind is PrimitiveKind.TABLE:
                    return Relation.SUBSET
                return Relation.DISJOINT
            case PrimitiveType(kind=kind), TableType() | MetatableType():
                if kind is PrimitiveKind.TABLE:
                    return Relation.SUPERSET
                return Relation.DISJOINT
            case FunctionType(), PrimitiveType(kind=kind):
                if kind is PrimitiveKind.FUNCTION:
                    return Relation.SUBSET
                return Relation.DISJOINT
            case PrimitiveType(kind=kind), FunctionType():
                if kind is PrimitiveKind.FUNCTION:
                    return Relation.SUPERSET
                return Relation.DISJOINT
            case TableType(), TableType():
                return self._relate_tables(lv, rv)
            case TableType() | MetatableType(), TableType() | MetatableType():
                return Relation.INTERSECTS
            case FunctionType(), FunctionType():
                return Relation.INTERSECTS
        return Relation.DISJOINT

    def _relate_union(self, options: list[TypeId], right: TypeId) -> Relation:
        relations = [self.relate(option, right) for option in options]
        if all(r is Relation.DISJOINT for r in relations):
            return Relation.DISJOINT
        if all(r in (Relation.SUBSET, Relation.COINCIDENT) for r in relations):
            return Relation.SUBSET
        if any(r in (Relation.SUPERSET, Relation.COINCIDENT) for r in relations):
            return Relation.SUPERSET
        return Relation.INTERSECTS

    def _relate_intersection(
        self, parts: list[TypeId], right: TypeId
    ) -> Relation:
        relations = [self.relate(part, right) for part in parts]
        if any(r is Relation.DISJOINT for r in relations):
            return Relation.DISJOINT
        if any(r in (Relation.SUBSET, Relation.COINCIDENT) for r in relations):
            return Relation.SUBSET
        return Relation.INTERSECTS

    def _relate_negation(self, negated: TypeId, right: TypeId) -> Relation:
        other = get(right, NegationType)
        if other is not None:
            # ~X against ~Y reverses the relation of X and Y.
            inner = self.relate(negated, other.ty)
            if inner is Relation.DISJOINT:
                return Relation.INTERSECTS
            return inner.flip()
        inner = self.relate(negated, right)
        if inner in (Relation.SUPERSET, Relation.COINCIDENT):
            return Relation.DISJOINT
        if inner is Relation.DISJOINT:
            return Relation.SUPERSET
        return Relation.INTERSECTS

    def _relate_opaque(self, left: TypeId, right: TypeId) -> Relation:
        lextern = get(left, ExternType)
        rextern = get(right, ExternType)
        if lextern is not None and rextern is not None:
            if extern_is_subclass(left, right):
                return Relation.SUBSET
            if extern_is_subclass(right, left):
                return Relation.SUPERSET
            return Relation.DISJOINT
        if lextern is not None or rextern is not None:
            return Relation.DISJOINT
        # The error type overlaps everything.
        return Relation.INTERSECTS

    def _relate_tables(self, left: TableType, right: TableType) -> Relation:
        for name, prop in left.props.items():
            other = right.props.get(name)
            if other is None or prop.read_ty is None or other.read_ty is None:
                continue
            if self.relate(prop.read_ty, other.read_ty) is Relation.DISJOINT:
                return Relation.DISJOINT
        return Relation.INTERSECTS

    def intersect(self, left: TypeId, right: TypeId) -> TypeId:
        left = follow(left)
        right = follow(right)
        if left is right:
            return left

        if is_type_variable(left) or is_type_variable(right):
            for ty in (left, right):
                if is_type_variable(ty):
                    self.blocked_types.add(ty)
            if isinstance(right.ty, UnknownType):
                return left
            if isinstance(left.ty, UnknownType):
                return right
            if isinstance(left.ty, NeverType) or isinstance(
                right.ty, NeverType
            ):
                return self.builtins.never
            return make_intersection(self.arena, self.builtins, [left, right])

        match self.relate(left, right):
            case Relation.COINCIDENT | Relation.SUBSET:
                return left
            case Relation.SUPERSET:
                return right
            case Relation.DISJOINT:
                return self.builtins.never

        if (union := get(left, UnionType)) is not None:
            return self._union_all(
                [self.intersect(option, right) for option in union.options]
            )
        if (union := get(right, UnionType)) is not None:
            return self._union_all(
                [self.intersect(left, option) for option in union.options]
            )
        if is_boolean(left):
            return self._union_all(
                [
                    self.intersect(self.builtins.true_, right),
                    self.intersect(self.builtins.false_, right),
                ]
            )
        if is_boolean(right):
            return self._union_all(
                [
                    self.intersect(left, self.builtins.true_),
                    self.intersect(left, self.builtins.false_),
                ]
            )
        ltable = get(left, TableType)
        rtable = get(right, TableType)
        if ltable is not None and rtable is not None:
            return self.intersect_tables(ltable, rtable)
        parts: list[TypeId] = []
        for ty in (left, right):
            intersection = get(ty, IntersectionType)
            parts.extend([ty] if intersection is None else intersection.parts)
        return make_intersection(self.arena, self.builtins, parts)

    def intersect_tables(self, left: TableType, right: TableType) -> TypeId:
        props: dict[str, Property] = {}
        for name in [*left.props, *right.props]:
            if name in props:
                continue
            lprop = left.props.get(name)
            rprop = right.props.get(name)
            if lprop is None or rprop is None:
                props[name] = lprop or rprop  # type: ignore
                continue
            read_ty = self._intersect_optional(lprop.read_ty, rprop.read_ty)
            if read_ty is not None and isinstance(
                follow(read_ty).ty, NeverType
            ):
                return self.builtins.never
            if lprop.is_shared and rprop.is_shared:
                props[name] = Property.rw(read_ty)  # type: ignore
                continue
            write_ty = self._intersect_optional(
                lprop.write_ty, rprop.write_ty
            )
            props[name] = Property(read_ty, write_ty)
        indexer = left.indexer if left.indexer is not None else right.indexer
        return self.arena.add_type(TableType(props, indexer))

    def _intersect_optional(
        self, left: TypeId | None, right: TypeId | None
    ) -> TypeId | None:
        if left is None:
            return right
        if right is None:
            return left
        return self.intersect(left, right)

    def union(self, left: TypeId, right: TypeId) -> TypeId:
        left = follow(left)
        right = follow(right)
        if left is right:
            return left

        if is_type_variable(left) or is_type_variable(right):
            for ty in (left, right):
                if is_type_variable(ty):
                    self.blocked_types.add(ty)
            if isinstance(right.ty, NeverType):
                return left
            if isinstance(left.ty, NeverType):
                return right
            return make_union(self.arena, self.builtins, [left, right])

        match self.relate(left, right):
            case Relation.COINCIDENT | Relation.SUPERSET:
                return left
            case Relation.SUBSET:
                return right

        options: list[TypeId] = []
        for ty in (left, right):
            union = get(ty, UnionType)
            for option in [ty] if union is None else union.options:
                self._add_option(options, follow(option))
        return make_union(self.arena, self.builtins, self._merge_booleans(options))

    def _add_option(self, options: list[TypeId], option: TypeId) -> None:
        for existing in options:
            if is_type_variable(existing) or is_type_variable(option):
                continue
            if self.relate(option, existing) in (
                Relation.SUBSET,
                Relation.COINCIDENT,
            ):
                return
        options[:] = [
            existing
            for existing in options
            if is_type_variable(existing)
            or is_type_variable(option)
            or self.relate(existing, option) is not Relation.SUBSET
        ]
        options.append(option)

    def _merge_booleans(self, options: list[TypeId]) -> list[TypeId]:
        values = [
            singleton.value
            for option in options
            if (singleton := get(option, SingletonType)) is not None
            and isinstance(singleton.value, bool)
        ]
        if True not in values or False not in values:
            return options
        merged: list[TypeId] = []
        for option in options:
            singleton = get(option, SingletonType)
            if singleton is not None and isinstance(singleton.value, bool):
                if self.builtins.boolean not in merged:
                    merged.append(self.builtins.boolean)
                continue
            merged.append(option)
        return merged

    def _union_all(self, types: list[TypeId]) -> TypeId:
        result = self.builtins.never
        for ty in types:
            result = self.union(result, ty)
        return result


def _relate_singleton_to_primitive(
    value: bool | str, kind: PrimitiveKind
) -> Relation:
    if isinstance(value, bool) and kind is PrimitiveKind.BOOLEAN:
        return Relation.SUBSET
    if isinstance(value, str) and kind is PrimitiveKind.STRING:
        return Relation.SUBSET
    return Relation.DISJOINT


def simplify_union(
    builtins: BuiltinTypes, arena: TypeArena, left: TypeId, right: TypeId
) -> SimplifyResult:
    simplifier = TypeSimplifier(builtins, arena)
    result = simplifier.union(left, right)
    return SimplifyResult(result, simplifier.blocked_types)


def simplify_intersection(
    builtins: BuiltinTypes, arena: TypeArena, left: TypeId, right: TypeId
) -> SimplifyResult:
    simplifier = TypeSimplifier(builtins, arena)
    result = simplifier.intersect(left, right)
    return SimplifyResult(result, simplifier.blocked_types)


def _is_simple_discriminant(ty: TypeId) -> bool:
    match follow(ty).ty:
        case PrimitiveType() | SingletonType():
            return True
        case NegationType(ty=negated):
            return isinstance(
                follow(negated).ty, (PrimitiveType, SingletonType)
            )
        case TableType(props=props, indexer=None) if len(props) == 1:
            (prop,) = props.values()
            return (
                prop.read_ty is not None
                and prop.write_ty is None
                and _is_simple_discriminant(prop.read_ty)
            )
    return False


def intersect_with_simple_discriminant(
    builtins: BuiltinTypes,
    arena: TypeArena,
    target: TypeId,
    discriminant: TypeId,
) -> TypeId | None:
    """Intersect `target` with a literal-like discriminant without
    normalizing.

    Discriminants are primitives, singletons, their negations and tables
    with a single read-only property holding such a discriminant. None means
    the fast path does not apply."""
    discriminant = follow(discriminant)
    if not _is_simple_discriminant(discriminant):
        return None
    target = follow(target)
    match target.ty:
        case UnknownType():
            return discriminant
        case UnionType(options=options):
            refined: list[TypeId] = []
            for option in options:
                result = intersect_with_simple_discriminant(
                    builtins, arena, option, discriminant
                )
                if result is None:
                    return None
                if not isinstance(follow(result).ty, NeverType):
                    refined.append(result)
            return make_union(arena, builtins, refined)
        case TableType() as table:
            shape = get(discriminant, TableType)
            if shape is None:
                return None
            ((name, prop),) = shape.props.items()
            existing = table.props.get(name)
            if existing is None or existing.read_ty is None:
                return None
            assert prop.read_ty is not None
            read_ty = intersect_with_simple_discriminant(
                builtins, arena, existing.read_ty, prop.read_ty
            )
            if read_ty is None:
                return None
            if isinstance(follow(read_ty).ty, NeverType):
                return builtins.never
            props = dict(table.props)
            props[name] = Property(read_ty, existing.write_ty)
            return arena.add_type(TableType(props, table.indexer, table.name))
        case PrimitiveType() | SingletonType():
            if get(discriminant, TableType) is not None:
                if is_primitive(target, PrimitiveKind.TABLE):
                    return discriminant
                return builtins.never
            match TypeSimplifier(builtins, arena).relate(target, discriminant):
                case Relation.COINCIDENT | Relation.SUBSET:
                    return target
                case Relation.SUPERSET:
                    return discriminant
                case Relation.DISJOINT:
                    return builtins.never
    return None
