"""Test helper utilities for cardtasks tests.

Collaborator fakes and snapshot helpers shared across the test modules.
"""

from typing import Dict, List, Mapping, Optional
from uuid import UUID

from cardtasks.models import ChangeEvent


class FakeTimeLedger:
    """Time ledger returning fixed hours per node."""

    def __init__(self, hours: Optional[Dict[UUID, float]] = None):
        self.hours: Dict[UUID, float] = hours or {}
        self.calls = 0

    async def actual_hours(self, card_id: UUID) -> Mapping[UUID, float]:
        self.calls += 1
        return dict(self.hours)


class BrokenTimeLedger:
    """Time ledger whose backing store is unreachable."""

    async def actual_hours(self, card_id: UUID) -> Mapping[UUID, float]:
        raise ConnectionError("time tracking unavailable")


class BrokenNotifier:
    """Change notifier that fails on every event."""

    def __init__(self):
        self.attempts = 0

    async def emit(self, event: ChangeEvent) -> None:
        self.attempts += 1
        raise ConnectionError("broadcast channel closed")


async def snapshot(task_service, card_id: UUID) -> List[dict]:
    """Serialized flat listing, used to prove failed calls change nothing."""
    return [
        task.model_dump(mode="json")
        for task in await task_service.list_tasks(card_id)
    ]


def sibling_indexes(tasks, parent_id: Optional[UUID]) -> List[int]:
    """order_index values of one sibling group, in listing order."""
    return [t.order_index for t in tasks if t.parent_id == parent_id]
