"""
Status propagation for task hierarchies.

Applies a status change to one node and cascades auto-completion upward:
when every direct child of a parent is completed, the parent is completed
too, and the check repeats one level up. Auto-completion only moves upward
and only on completion; reopening a node never reopens its ancestors.

Runs against the TaskNodeORM rows of one card loaded in the caller's
transaction, so the cascade commits or rolls back with the triggering change.
"""

from datetime import datetime
from typing import Any, Dict, Hashable, Iterable, List, Optional

from cardtasks.logging_config import get_logger
from cardtasks.models import TaskStatus
from cardtasks.services.tree_checks import build_children_index

logger = get_logger(__name__)


def _is_completed(node: Any) -> bool:
    return TaskStatus(node.status) == TaskStatus.COMPLETED


def mark_completed(node: Any, now: datetime) -> None:
    """Set status to completed with its completion timestamp."""
    node.status = TaskStatus.COMPLETED.value
    node.completed_at = now
    node.updated_at = now


def apply_status_change(
    node: Any,
    new_status: TaskStatus,
    card_nodes: Iterable[Any],
    now: datetime,
) -> List[Any]:
    """
    Change a node's status and cascade completion to its ancestors.

    Args:
        node: ORM row whose status changes (must be part of card_nodes)
        new_status: Target status
        card_nodes: Every ORM row of the node's card
        now: Timestamp used for completed_at/updated_at

    Returns:
        Ancestors that were auto-completed, nearest first
    """
    old_status = TaskStatus(node.status)
    if old_status == new_status:
        return []

    if new_status == TaskStatus.COMPLETED:
        mark_completed(node, now)
        card_nodes = list(card_nodes)
        by_id = {n.id: n for n in card_nodes}
        auto_completed: List[Any] = []
        _cascade_completion(node, by_id, build_children_index(card_nodes), now, auto_completed, set())
        if auto_completed:
            logger.info(
                f"Auto-completed {len(auto_completed)} ancestor(s) of task {node.id}: "
                f"{[a.id for a in auto_completed]}"
            )
        return auto_completed

    node.status = new_status.value
    node.completed_at = None
    node.updated_at = now
    logger.debug(f"Task {node.id} status {old_status.value} -> {new_status.value}")
    return []


def _cascade_completion(
    node: Any,
    by_id: Dict[Hashable, Any],
    children: Dict[Optional[Hashable], List[Any]],
    now: datetime,
    auto_completed: List[Any],
    visited: set,
) -> None:
    if node.parent_id is None or node.id in visited:
        return
    visited.add(node.id)

    parent = by_id.get(node.parent_id)
    if parent is None:
        return

    siblings = children.get(parent.id, [])
    if not all(_is_completed(sibling) for sibling in siblings):
        return

    if not _is_completed(parent):
        mark_completed(parent, now)
        auto_completed.append(parent)

    _cascade_completion(parent, by_id, children, now, auto_completed, visited)
