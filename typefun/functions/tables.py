"""Type functions over table shapes: key sets, indexing and metatables."""

from __future__ import annotations

from typing import TYPE_CHECKING, Mapping, Sequence

from typefun.calls import extend_type_pack, solve_function_call
from typefun.functions.catalog import builtin_type_functions
from typefun.functions.common import check_arity
from typefun.functions.result import TypeFunctionReductionResult
from typefun.metatables import find_metatable_entry
from typefun.normalize import NormalizedType
from typefun.orderedset import InsertionOrderedSet
from typefun.scans import is_pending
from typefun.simplify import simplify_union
from typefun.subtyping import Subtyping
from typefun.types import (
    AnyType,
    ExternType,
    FunctionType,
    IntersectionType,
    MetatableType,
    PrimitiveType,
    Property,
    SingletonType,
    TableIndexer,
    TableType,
    TypeFunctionInstanceType,
    TypeId,
    TypePackId,
    UnionType,
    UnknownType,
    follow,
    get,
    is_string,
)

if TYPE_CHECKING:
    from typefun.context import TypeFunctionContext

type Result = TypeFunctionReductionResult[TypeId]


def _has_only_tables_or_externs(norm: NormalizedType) -> bool:
    """Whether `norm` is made of tables alone or of extern types alone."""
    if norm.has_tables() == norm.has_extern_types():
        return False
    return not (
        norm.has_tops()
        or norm.has_booleans()
        or norm.has_errors()
        or norm.has_nils()
        or norm.has_numbers()
        or norm.has_strings()
        or norm.has_threads()
        or norm.has_buffers()
        or norm.has_functions()
        or norm.has_tyvars()
    )


def compute_keys_of(
    ctx: TypeFunctionContext,
    ty: TypeId,
    keys: dict[str, None],
    seen: set[TypeId],
    is_raw: bool,
) -> bool:
    """Add the statically known keys of `ty` to `keys`.

    Returns False when the keys are "every string" and `keys` should be
    ignored."""
    ty = follow(ty)
    # The top table type.
    if get(ty, PrimitiveType) is not None:
        return False
    if ty in seen:
        return True
    seen.add(ty)

    match ty.ty:
        case TableType(props=props, indexer=indexer):
            if indexer is not None and is_string(indexer.index_type):
                return False
            keys.update(dict.fromkeys(props))
            return True
        case MetatableType(table=table):
            complete = True
            if not is_raw:
                index = find_metatable_entry(ctx.builtins, ty, '__index')
                if index is not None:
                    complete = compute_keys_of(ctx, index, keys, seen, is_raw)
            return complete and compute_keys_of(ctx, table, keys, seen, is_raw)
        case ExternType(props=props, parent=parent, metatable=metatable):
            keys.update(dict.fromkeys(props))
            complete = True
            if metatable is not None and not is_raw:
                index = find_metatable_entry(ctx.builtins, ty, '__index')
                if index is not None:
                    complete = compute_keys_of(ctx, index, keys, seen, is_raw)
            if parent is not None:
                complete = complete and compute_keys_of(
                    ctx, parent, keys, seen, is_raw
                )
            return complete
    ctx.ice.ice(f'cannot compute the keys of {ty}')


def _keyof(
    name: str,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
    is_raw: bool,
) -> Result:
    check_arity(ctx, name, type_args, pack_args, exactly=1)
    operand = follow(type_args[0])
    norm = ctx.normalizer.normalize(operand)
    if norm is None:
        return TypeFunctionReductionResult.blocked_on()
    if not _has_only_tables_or_externs(norm):
        return TypeFunctionReductionResult.erroneous()

    shapes = list(norm.extern_types if norm.has_extern_types() else norm.tables)
    keys: dict[str, None] = {}
    if not compute_keys_of(ctx, shapes[0], keys, set(), is_raw):
        return TypeFunctionReductionResult.reduced(ctx.builtins.string)
    # Only keys common to every shape survive; shapes with every string as
    # a key say nothing.
    for shape in shapes[1:]:
        local_keys: dict[str, None] = {}
        if not compute_keys_of(ctx, shape, local_keys, set(), is_raw):
            continue
        keys = {key: None for key in keys if key in local_keys}

    if not keys:
        return TypeFunctionReductionResult.reduced(ctx.builtins.never)
    singletons = [ctx.arena.add_type(SingletonType(key)) for key in keys]
    if len(singletons) == 1:
        return TypeFunctionReductionResult.reduced(singletons[0])
    return TypeFunctionReductionResult.reduced(
        ctx.arena.add_type(UnionType(singletons))
    )


def keyof_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    return _keyof('keyof', type_args, pack_args, ctx, is_raw=False)


def rawkeyof_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    return _keyof('rawkeyof', type_args, pack_args, ctx, is_raw=True)


def _add_options(result: InsertionOrderedSet[TypeId], ty: TypeId) -> None:
    ty = follow(ty)
    union = get(ty, UnionType)
    if union is None:
        result.add(ty)
        return
    for option in union.options:
        result.add(follow(option))


def search_props_and_indexer(
    ctx: TypeFunctionContext,
    ty: TypeId,
    props: Mapping[str, Property],
    indexer: TableIndexer | None,
    result: InsertionOrderedSet[TypeId],
) -> bool:
    """Look `ty` up in a property map and indexer, adding what it finds to
    `result`."""
    ty = follow(ty)
    singleton = get(ty, SingletonType)
    if singleton is not None and isinstance(singleton.value, str):
        prop = props.get(singleton.value)
        if prop is not None:
            prop_ty = prop.read_ty if prop.read_ty is not None else prop.write_ty
            if prop_ty is None:
                return False
            _add_options(result, prop_ty)
            return True

    if indexer is not None:
        index_type = follow(indexer.index_type)
        instance = get(index_type, TypeFunctionInstanceType)
        # An index<> instance as the key type means a cycle; tie the knot.
        if (
            instance is not None
            and instance.function is builtin_type_functions().index_func
        ):
            index_type = follow(indexer.index_result_type)
        subtyping = Subtyping(ctx.builtins, ctx.arena, ctx.normalizer)
        if subtyping.is_subtype(ty, index_type):
            _add_options(result, indexer.index_result_type)
            return True
    return False


def index_into_table(
    ctx: TypeFunctionContext,
    indexer: TypeId,
    indexee: TypeId,
    result: InsertionOrderedSet[TypeId],
    is_raw: bool,
    seen: set[TypeId] | None = None,
) -> bool:
    indexer = follow(indexer)
    indexee = follow(indexee)
    seen = set() if seen is None else seen
    if indexee in seen:
        return False
    seen.add(indexee)

    match indexee.ty:
        case UnionType(options=options):
            found = True
            for option in options:
                # Met in an earlier option already.
                if follow(option) in seen and follow(option) is not indexee:
                    continue
                found = found and index_into_table(
                    ctx, indexer, option, result, is_raw, seen
                )
            return found
        case FunctionType():
            returns = solve_function_call(
                ctx, indexee, ctx.arena.add_pack([indexer])
            )
            if returns is None:
                return False
            extracted = extend_type_pack(returns, 1)
            if not extracted:
                return False
            result.add(follow(extracted[0]))
            return True
        case TableType(props=props, indexer=table_indexer):
            return search_props_and_indexer(
                ctx, indexer, props, table_indexer, result
            )
        case MetatableType(table=table):
            shape = get(table, TableType)
            if shape is not None and search_props_and_indexer(
                ctx, indexer, shape.props, shape.indexer, result
            ):
                return True
            if not is_raw:
                index = find_metatable_entry(ctx.builtins, indexee, '__index')
                if index is not None:
                    return index_into_table(
                        ctx, indexer, index, result, is_raw, seen
                    )
    return False


def _index_extern(
    ctx: TypeFunctionContext,
    extern: TypeId,
    key: TypeId,
    properties: InsertionOrderedSet[TypeId],
) -> bool:
    shape = get(extern, ExternType)
    if shape is None:
        return False
    if search_props_and_indexer(ctx, key, shape.props, shape.indexer, properties):
        return True
    parent = shape.parent
    while parent is not None:
        parent_shape = get(parent, ExternType)
        if parent_shape is None:
            break
        if search_props_and_indexer(
            ctx, key, parent_shape.props, parent_shape.indexer, properties
        ):
            return True
        parent = parent_shape.parent
    index = find_metatable_entry(ctx.builtins, extern, '__index')
    if index is None:
        return False
    return index_into_table(ctx, key, index, properties, is_raw=False)


def _index(
    name: str,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
    is_raw: bool,
) -> Result:
    """index<T, K> looks K up in T, the way `t[k]` reads; rawget skips
    metatables."""
    check_arity(ctx, name, type_args, pack_args, exactly=2)
    indexee = follow(type_args[0])
    if is_pending(indexee, ctx.solver):
        return TypeFunctionReductionResult.blocked_on([indexee])
    indexee_norm = ctx.normalizer.normalize(indexee)
    if indexee_norm is None:
        return TypeFunctionReductionResult.blocked_on()
    if indexee_norm.should_suppress_errors():
        return TypeFunctionReductionResult.reduced(ctx.builtins.any)
    if not _has_only_tables_or_externs(indexee_norm):
        return TypeFunctionReductionResult.erroneous()

    indexer = follow(type_args[1])
    if is_pending(indexer, ctx.solver):
        return TypeFunctionReductionResult.blocked_on([indexer])
    indexer_norm = ctx.normalizer.normalize(indexer)
    if indexer_norm is None:
        return TypeFunctionReductionResult.blocked_on()
    if indexer_norm.has_tops() or indexer_norm.has_errors():
        return TypeFunctionReductionResult.erroneous()

    union = get(indexer, UnionType)
    keys = list(union.options) if union is not None else [indexer]
    properties = InsertionOrderedSet[TypeId]()

    if indexee_norm.has_extern_types():
        # Matches the rawget library function, which rejects userdata.
        if is_raw:
            return TypeFunctionReductionResult.erroneous()
        for extern in indexee_norm.extern_types:
            for key in keys:
                if not _index_extern(ctx, extern, key, properties):
                    return TypeFunctionReductionResult.erroneous()

    if indexee_norm.has_tables():
        for table in indexee_norm.tables:
            for key in keys:
                if not index_into_table(ctx, key, table, properties, is_raw):
                    return TypeFunctionReductionResult.erroneous()

    if len(properties) == 1:
        (only,) = properties
        return TypeFunctionReductionResult.reduced(only)
    return TypeFunctionReductionResult.reduced(
        ctx.arena.add_type(UnionType(list(properties)))
    )


def index_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    return _index('index', type_args, pack_args, ctx, is_raw=False)


def rawget_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    return _index('rawget', type_args, pack_args, ctx, is_raw=True)


def setmetatable_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    check_arity(ctx, 'setmetatable', type_args, pack_args, exactly=2)
    target = follow(type_args[0])
    metatable = follow(type_args[1])

    norm = ctx.normalizer.normalize(target)
    if norm is None:
        return TypeFunctionReductionResult.blocked_on()
    if not norm.has_only_tables():
        return TypeFunctionReductionResult.erroneous()
    if get(metatable, TableType) is None and get(metatable, MetatableType) is None:
        return TypeFunctionReductionResult.erroneous()

    tables = list(norm.tables)
    # A `__metatable` entry locks the table's metatable.
    for table in tables:
        if find_metatable_entry(ctx.builtins, table, '__metatable') is not None:
            return TypeFunctionReductionResult.erroneous()
    if len(tables) == 1:
        return TypeFunctionReductionResult.reduced(
            ctx.arena.add_type(MetatableType(tables[0], metatable))
        )

    result_ty = ctx.builtins.never
    for table in tables:
        with_metatable = ctx.arena.add_type(MetatableType(table, metatable))
        simplified = simplify_union(
            ctx.builtins, ctx.arena, result_ty, with_metatable
        )
        if simplified.blocked_types:
            return TypeFunctionReductionResult.blocked_on(
                simplified.blocked_types
            )
        result_ty = simplified.result
    return TypeFunctionReductionResult.reduced(result_ty)


def _getmetatable(ctx: TypeFunctionContext, target: TypeId) -> Result:
    target = follow(target)
    result: TypeId | None = None
    match target.ty:
        case TableType():
            pass
        case MetatableType(metatable=metatable):
            result = metatable
        case ExternType(metatable=metatable) | PrimitiveType(
            metatable=metatable
        ):
            result = metatable
        case SingletonType(value=str()):
            result = ctx.builtins.string_metatable
        case SingletonType():
            pass
        case AnyType():
            result = target
        case _:
            return TypeFunctionReductionResult.erroneous()

    locked = find_metatable_entry(ctx.builtins, target, '__metatable')
    if locked is not None:
        return TypeFunctionReductionResult.reduced(locked)
    if result is not None:
        return TypeFunctionReductionResult.reduced(result)
    return TypeFunctionReductionResult.reduced(ctx.builtins.nil)


def getmetatable_type_function(
    instance: TypeId,
    type_args: Sequence[TypeId],
    pack_args: Sequence[TypePackId],
    ctx: TypeFunctionContext,
) -> Result:
    check_arity(ctx, 'getmetatable', type_args, pack_args, exactly=1)
    target = follow(type_args[0])
    if is_pending(target, ctx.solver):
        return TypeFunctionReductionResult.blocked_on([target])

    match target.ty:
        case UnionType(options=options):
            metatables: list[TypeId] = []
            for option in options:
                result = _getmetatable(ctx, option)
                if result.result is None:
                    return result
                metatables.append(result.result)
            return TypeFunctionReductionResult.reduced(
                ctx.arena.add_type(UnionType(metatables))
            )
        case IntersectionType(parts=parts):
            metatables = []
            skipped_unknown = False
            for part in parts:
                result = _getmetatable(ctx, part)
                if result.result is None:
                    # unknown parts say nothing about the metatable.
                    if get(part, UnknownType) is not None:
                        skipped_unknown = True
                        continue
                    return result
                metatables.append(result.result)
            if skipped_unknown and not metatables:
                return TypeFunctionReductionResult.erroneous()
            if len(metatables) == 1:
                return TypeFunctionReductionResult.reduced(metatables[0])
            return TypeFunctionReductionResult.reduced(
                ctx.arena.add_type(IntersectionType(metatables))
            )
    return _getmetatable(ctx, target)
