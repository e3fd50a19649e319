"""
Progress aggregation for task hierarchies.

Read-only rollups computed on demand from the full node set of a card.
Nothing is cached; every call reflects the latest committed state.
"""

from typing import Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from cardtasks.models import (
    CategoryProgress,
    EfficiencyMetrics,
    ProgressSummary,
    TaskNode,
    TaskPriority,
    TaskStatus,
)
from cardtasks.services.tree_checks import build_children_index, collect_subtree


def counts_by_status(nodes: Iterable[TaskNode]) -> Dict[str, int]:
    """
    Count nodes per status across all depths.

    Returns:
        Dictionary with total, todo, in_progress and completed counts
    """
    counts = {"total": 0, "todo": 0, "in_progress": 0, "completed": 0}
    for node in nodes:
        counts["total"] += 1
        counts[node.status.value] += 1
    return counts


def completion_percentage(completed: int, total: int) -> float:
    """
    Percentage of completed nodes, rounded to two decimals.

    Returns:
        completed / total * 100, or 0.0 when total is 0
    """
    if total == 0:
        return 0.0
    return round(completed / total * 100, 2)


def hours_rollup(nodes: Iterable[TaskNode]) -> Dict[str, Optional[float]]:
    """
    Sum estimated and actual hours over the nodes that define them.

    Returns:
        Dictionary with estimated_hours, actual_hours and accuracy_percentage;
        accuracy is None when nothing was estimated
    """
    estimated = 0.0
    actual = 0.0
    for node in nodes:
        if node.estimated_hours is not None:
            estimated += node.estimated_hours
        if node.actual_hours is not None:
            actual += node.actual_hours

    accuracy = round(actual / estimated * 100, 2) if estimated > 0 else None
    return {
        "estimated_hours": estimated,
        "actual_hours": actual,
        "accuracy_percentage": accuracy,
    }


def priority_breakdown(nodes: Iterable[TaskNode]) -> Dict[str, int]:
    """Count nodes per priority, every priority present with 0 by default."""
    breakdown = {priority.value: 0 for priority in TaskPriority}
    for node in nodes:
        breakdown[node.priority.value] += 1
    return breakdown


def efficiency_metrics(nodes: Iterable[TaskNode]) -> EfficiencyMetrics:
    """
    Compare estimates with logged hours for nodes that have both.

    A node is on time when actual <= estimated. Accuracy per node is
    actual / estimated * 100; nodes estimated at 0 hours are skipped.
    """
    on_time = 0
    over = 0
    accuracies: List[float] = []
    for node in nodes:
        if node.estimated_hours is None or node.actual_hours is None:
            continue
        if node.estimated_hours <= 0:
            continue
        if node.actual_hours <= node.estimated_hours:
            on_time += 1
        else:
            over += 1
        accuracies.append(node.actual_hours / node.estimated_hours * 100)

    average = round(sum(accuracies) / len(accuracies), 2) if accuracies else None
    return EfficiencyMetrics(
        tasks_on_time=on_time,
        tasks_over_estimate=over,
        average_estimation_accuracy=average,
    )


def category_breakdown(nodes: Sequence[TaskNode], parent_id: Optional[UUID] = None) -> List[CategoryProgress]:
    """
    Progress of each direct child of parent_id, over that child's subtree.

    With parent_id None the categories are the card's root nodes.
    """
    children = build_children_index(nodes)
    categories = []
    for child in children.get(parent_id, []):
        subtree = collect_subtree(nodes, child.id)
        counts = counts_by_status(subtree)
        hours = hours_rollup(subtree)
        categories.append(
            CategoryProgress(
                node_id=child.id,
                category=child.title,
                total=counts["total"],
                completed=counts["completed"],
                progress_percentage=completion_percentage(counts["completed"], counts["total"]),
                estimated_hours=hours["estimated_hours"],
                actual_hours=hours["actual_hours"],
            )
        )
    return categories


def summarize(
    nodes: Sequence[TaskNode],
    card_id: UUID,
    node_id: Optional[UUID] = None,
) -> ProgressSummary:
    """
    Build a full progress summary for a card or for one node's descendants.

    Args:
        nodes: Every node of the card
        card_id: The card being summarized
        node_id: Restrict metrics to this node's descendants (node excluded)

    Returns:
        ProgressSummary with counts, percentage, hours and breakdowns
    """
    if node_id is not None:
        scope = collect_subtree(nodes, node_id)[1:]
    else:
        scope = list(nodes)

    counts = counts_by_status(scope)
    hours = hours_rollup(scope)

    return ProgressSummary(
        card_id=card_id,
        node_id=node_id,
        total=counts["total"],
        todo=counts[TaskStatus.TODO.value],
        in_progress=counts[TaskStatus.IN_PROGRESS.value],
        completed=counts[TaskStatus.COMPLETED.value],
        completion_percentage=completion_percentage(counts["completed"], counts["total"]),
        total_estimated_hours=hours["estimated_hours"],
        total_actual_hours=hours["actual_hours"],
        accuracy_percentage=hours["accuracy_percentage"],
        by_priority=priority_breakdown(scope),
        efficiency=efficiency_metrics(scope),
        categories=category_breakdown(nodes, node_id),
    )
