"""Pure merge functions over the normalized entity snapshot.

An entity snapshot maps entity type names (``"users"``, ``"posts"``) to the
entities of that type, usually a mapping of entity id to entity. Descriptors
are lookup tables keyed by entity type name whose values are the functions
that compute the next value of that type.

None of these functions mutate their inputs; they return new snapshots that
the middleware hands to the store inside lifecycle events.

Examples:
    Merging a response into entities::

        update = {"users": lambda prev, users: {**(prev or {}), **(users or {})}}
        entities = update_entities(update, {"users": {}}, {"users": {"1": {"name": "Ada"}}})
        # {"users": {"1": {"name": "Ada"}}}

    Reverting a failed optimistic update::

        initial = {"users": {"1": {"name": "Ada"}}}
        optimistic = optimistic_update_entities(
            {"users": lambda users: {**users, "1": {"name": "Grace"}}}, initial
        )
        reverted = rollback_entities(None, initial, optimistic, optimistic)
        # {"users": {"1": {"name": "Ada"}}}
"""

from collections.abc import Iterable, Mapping
from typing import Any

from query_middleware.models import (
    OptimisticUpdateDescriptor,
    RollbackDescriptor,
    UpdateDescriptor,
)

_MISSING = object()


def update_entities(
    update: UpdateDescriptor | None,
    entities: Mapping[str, Any] | None,
    transformed: Any,
) -> dict[str, Any]:
    """Merge a transformed response body into the entity snapshot.

    Each entity type named by the descriptor is replaced by
    ``update[type](entities.get(type), transformed.get(type))``. All other
    types pass through unchanged.

    Args:
        update: Update descriptor, or None for a no-op
        entities: Current entity snapshot
        transformed: Transformed response body

    Returns:
        The next entity snapshot
    """
    next_entities = dict(entities or {})
    if not update:
        return next_entities

    fragments = transformed if isinstance(transformed, Mapping) else {}
    for entity_type, merge in update.items():
        next_entities[entity_type] = merge(next_entities.get(entity_type), fragments.get(entity_type))

    return next_entities


def optimistic_update_entities(
    optimistic_update: OptimisticUpdateDescriptor | None,
    entities: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Apply a speculative update before any response exists.

    Each entity type named by the descriptor is replaced by
    ``optimistic_update[type](entities.get(type))``. A None function keeps the
    current value but still marks the type as touched.

    Args:
        optimistic_update: Optimistic update descriptor, or None for a no-op
        entities: Current entity snapshot

    Returns:
        The next entity snapshot
    """
    next_entities = dict(entities or {})
    if not optimistic_update:
        return next_entities

    for entity_type, speculate in optimistic_update.items():
        if speculate is not None:
            next_entities[entity_type] = speculate(next_entities.get(entity_type))

    return next_entities


def touched_entity_types(optimistic_update: OptimisticUpdateDescriptor | None) -> list[str]:
    """Entity types an optimistic update descriptor touches."""
    return list(optimistic_update or {})


def pick_entities(entities: Mapping[str, Any] | None, entity_types: Iterable[str]) -> dict[str, Any]:
    """Restrict a snapshot to the given entity types.

    Types absent from the snapshot are included with a None value so that a
    rollback can remove a type the optimistic update introduced.
    """
    entities = entities or {}
    return {entity_type: entities.get(entity_type) for entity_type in entity_types}


def rollback_entities(
    rollback: RollbackDescriptor | None,
    initial_entities: Mapping[str, Any],
    current_entities: Mapping[str, Any],
    optimistic_entities: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Compute the values restoring a failed optimistic update.

    Only the entity types present in ``initial_entities`` are considered; the
    caller passes the subset touched by the optimistic update. A rollback
    function for a type decides its value as ``rollback[type](initial, current)``.
    Types without one fall back to a scoped revert, see ``revert_value``.

    Args:
        rollback: Rollback descriptor, or None to use the scoped revert only
        initial_entities: Touched types before the optimistic update
        current_entities: Touched types as they are now
        optimistic_entities: Touched types right after the optimistic update

    Returns:
        The restored values of the touched entity types
    """
    rollback = rollback or {}
    reverted: dict[str, Any] = {}

    for entity_type, initial_value in initial_entities.items():
        current_value = current_entities.get(entity_type)
        revert = rollback.get(entity_type)

        if revert is not None:
            reverted[entity_type] = revert(initial_value, current_value)
        elif optimistic_entities is None:
            reverted[entity_type] = initial_value
        else:
            reverted[entity_type] = revert_value(
                initial_value, current_value, optimistic_entities.get(entity_type)
            )

    return reverted


def revert_value(initial: Any, current: Any, optimistic: Any) -> Any:
    """Three-way revert of one entity type.

    For mappings of id to entity, an id is restored to its initial entity
    (or removed if it did not exist) only when its current entity is still the
    one the optimistic update produced. Ids the optimistic update did not
    change, and ids changed again by other operations since, keep their
    current value.

    For any other value the same rule applies to the value as a whole.
    """
    if not all(value is None or isinstance(value, Mapping) for value in (initial, current, optimistic)):
        return initial if current == optimistic else current

    if current is None:
        return None if optimistic is None else current

    result = dict(current)
    for entity_id in set(initial or {}) | set(optimistic or {}):
        before = (initial or {}).get(entity_id, _MISSING)
        speculated = (optimistic or {}).get(entity_id, _MISSING)
        if _same(before, speculated):
            continue
        if not _same(result.get(entity_id, _MISSING), speculated):
            continue
        if before is _MISSING:
            result.pop(entity_id, None)
        else:
            result[entity_id] = before

    # A type the optimistic update introduced goes away with its last id
    if initial is None and not result:
        return None
    return result


def _same(left: Any, right: Any) -> bool:
    return left is right or (left is not _MISSING and right is not _MISSING and left == right)
