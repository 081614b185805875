"""Position planning for ordered sibling-sets.

A sibling-set is every list of one board, or every task of one list. Plans are
always full re-linearizations: the new order is computed in memory and every
member gets ``0..n-1`` again, so a plan never produces duplicated or gapped
positions even when the stored state was already damaged. The store writes
only the entries that actually change (see :func:`changed_positions`).

These functions never touch the database and never suspend.
"""
from typing import Iterable, List, Sequence, Tuple

# (entity id, position)
Sibling = Tuple[int, int]
PositionPlan = List[Tuple[int, int]]


def allocate_append(sibling_count: int) -> int:
    """Position for a new entity appended to the end of the set"""
    if sibling_count < 0:
        raise ValueError("sibling_count must not be negative")
    return sibling_count


def ordered_ids(siblings: Iterable[Sibling]) -> List[int]:
    """Ids in display order; ties on position fall back to id"""
    ordered = sorted(siblings, key=lambda sibling: (sibling[1], sibling[0]))
    ids = [entity_id for entity_id, _ in ordered]
    if len(ids) != len(set(ids)):
        raise ValueError("sibling ids must be unique")
    return ids


def clamp_index(target_index: int, upper: int) -> int:
    return max(0, min(target_index, upper))


def linearize(ids: Sequence[int]) -> PositionPlan:
    return [(entity_id, position) for position, entity_id in enumerate(ids)]


def plan_move(siblings: Iterable[Sibling], moving_id: int, target_index: int) -> PositionPlan:
    """Move one entity inside its own sibling-set.

    ``target_index`` is clamped to the valid range, so anything past the end
    lands on the last slot.
    """
    ids = ordered_ids(siblings)
    if moving_id not in ids:
        raise ValueError(f"entity {moving_id} is not in the sibling-set")

    ids.remove(moving_id)
    ids.insert(clamp_index(target_index, len(ids)), moving_id)
    return linearize(ids)


def plan_cross_container_move(
    source_siblings: Iterable[Sibling],
    dest_siblings: Iterable[Sibling],
    moving_id: int,
    target_index: int,
) -> Tuple[PositionPlan, PositionPlan]:
    """Move one entity out of ``source_siblings`` into ``dest_siblings``"""
    source_ids = ordered_ids(source_siblings)
    dest_ids = ordered_ids(dest_siblings)
    if moving_id not in source_ids:
        raise ValueError(f"entity {moving_id} is not in the source sibling-set")
    if moving_id in dest_ids:
        raise ValueError(f"entity {moving_id} is already in the destination sibling-set")

    source_ids.remove(moving_id)
    dest_ids.insert(clamp_index(target_index, len(dest_ids)), moving_id)
    return linearize(source_ids), linearize(dest_ids)


def plan_removal_compaction(siblings: Iterable[Sibling], removed_id: int) -> PositionPlan:
    """Close the gap left by ``removed_id``.

    For a dense set this shifts every later sibling down by one.
    """
    ids = [entity_id for entity_id in ordered_ids(siblings) if entity_id != removed_id]
    return linearize(ids)


def changed_positions(siblings: Iterable[Sibling], plan: PositionPlan) -> PositionPlan:
    """Entries of ``plan`` whose position differs from the current one"""
    current = dict(siblings)
    return [
        (entity_id, position)
        for entity_id, position in plan
        if current.get(entity_id) != position
    ]


def is_dense(positions: Iterable[int]) -> bool:
    values = sorted(positions)
    return values == list(range(len(values)))
