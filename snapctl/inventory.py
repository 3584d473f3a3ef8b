"""Resolve a tag into an ordered list of targets."""

from typing import Iterable, List, Tuple, Union
from loguru import logger

from .client import ManagementClient
from .errors import InventoryUnavailable, SnapctlError
from .models import Target


def target_sort_key(target_id: str) -> Tuple[int, Union[int, str]]:
    """Numeric identifiers sort numerically and ahead of any others."""
    if target_id.isdigit():
        return (0, int(target_id))
    return (1, target_id)


class InventoryResolver:
    """Reads the tagged target set from the management plane."""

    def __init__(self, client: ManagementClient):
        self.client = client

    def resolve(self, tag: str, must_shutdown: Iterable[str] = ()) -> List[Target]:
        """Return the targets carrying ``tag``, sorted by identifier.

        ``must_shutdown`` may name targets by identifier or by name; matching
        targets get ``must_shutdown`` set. Any read failure raises
        InventoryUnavailable so that no partial inventory is acted upon.
        """
        if not tag or not tag.strip():
            raise ValueError("tag must not be empty")

        try:
            targets = self.client.list_by_tag(tag)
        except (SnapctlError, KeyError, TypeError, ValueError) as e:
            raise InventoryUnavailable(f"could not list targets tagged '{tag}': {e}") from e

        seen = set()
        for target in targets:
            if target.id in seen:
                raise InventoryUnavailable(f"duplicate target id {target.id} in inventory for '{tag}'")
            seen.add(target.id)

        sensitive = set(must_shutdown)
        resolved = []
        for target in sorted(targets, key=lambda t: target_sort_key(t.id)):
            flagged = target.id in sensitive or (target.name and target.name in sensitive)
            resolved.append(target.model_copy(update={"must_shutdown": bool(flagged)}))

        logger.debug(
            "Tag '{}' resolved to {} target(s): {}",
            tag, len(resolved), ", ".join(t.id for t in resolved),
        )
        return resolved
