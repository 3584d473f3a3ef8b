"""Retention arithmetic for the prune path."""

from typing import Dict, List, Mapping, Sequence

from .models import RetentionPolicy, SnapshotDescriptor


def excess(count: int, policy: RetentionPolicy) -> int:
    """Number of snapshots over the policy for a single target."""
    if count < 0:
        raise ValueError("snapshot count must be non-negative")
    return max(0, count - policy.max_retained)


def snaps_to_remove(inventory: Mapping[str, Sequence[SnapshotDescriptor]],
                    policy: RetentionPolicy) -> int:
    """Total excess across all targets."""
    return sum(excess(len(snapshots), policy) for snapshots in inventory.values())


def needs_work(inventory: Mapping[str, Sequence[SnapshotDescriptor]],
               policy: RetentionPolicy) -> bool:
    return snaps_to_remove(inventory, policy) > 0


def select_oldest(snapshots: Sequence[SnapshotDescriptor], count: int) -> List[SnapshotDescriptor]:
    """The ``count`` oldest snapshots, oldest first. Ties break on name."""
    if count <= 0:
        return []
    ordered = sorted(snapshots, key=lambda s: (s.created_at, s.name))
    return ordered[:count]


def plan_removals(inventory: Mapping[str, Sequence[SnapshotDescriptor]],
                  policy: RetentionPolicy) -> Dict[str, List[SnapshotDescriptor]]:
    """Snapshots to delete per target. Targets within policy are left out."""
    plan = {}
    for target_id, snapshots in inventory.items():
        count = excess(len(snapshots), policy)
        if count > 0:
            plan[target_id] = select_oldest(snapshots, count)
    return plan
