"""
Pytest configuration and fixtures for cardtasks tests.

Provides database fixtures, service fixtures, test data factories, and
common test utilities.
"""

from datetime import datetime
from uuid import UUID, uuid4

import pytest
import pytest_asyncio

from cardtasks.database import DatabaseManager
from cardtasks.models import TaskNode, TaskPriority, TaskStatus
from cardtasks.services.card_service import CardService
from cardtasks.services.change_feed import ChangeFeed
from cardtasks.services.task_service import TaskService
from tests.helpers import FakeTimeLedger


@pytest_asyncio.fixture
async def db_manager():
    """
    Create an in-memory SQLite database for testing.

    Yields:
        DatabaseManager instance with in-memory database
    """
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await manager.initialize()

    yield manager

    await manager.close()


@pytest_asyncio.fixture
async def db_session(db_manager):
    """
    Provide a database session for tests.

    Yields:
        AsyncSession for database operations
    """
    async with db_manager.get_session() as session:
        yield session


@pytest.fixture
def sample_card_id():
    """Generate a consistent UUID for testing cards."""
    return UUID("12345678-1234-5678-1234-567812345678")


@pytest.fixture
def card_service(db_manager):
    return CardService(db_manager)


@pytest_asyncio.fixture
async def sample_card(card_service, sample_card_id):
    """Register the sample card."""
    return await card_service.create_card("User Management", card_id=sample_card_id)


@pytest.fixture
def change_feed():
    return ChangeFeed()


@pytest.fixture
def time_ledger():
    return FakeTimeLedger()


@pytest.fixture
def task_service(db_manager, card_service, change_feed, time_ledger):
    """TaskService wired to the in-memory database, card registry and feed."""
    return TaskService(
        db_manager,
        cards=card_service,
        notifier=change_feed,
        time_ledger=time_ledger,
        lock_timeout=5.0,
    )


@pytest_asyncio.fixture
async def task_hierarchy(task_service, sample_card, sample_card_id):
    """
    Create a multi-level task hierarchy for testing nesting.

    Creates:
        - Parent Task
          - Child Task 1
            - Grandchild Task
          - Child Task 2
        - Sibling Task

    Returns:
        Dictionary with task IDs at each level
    """
    parent = await task_service.create_task(sample_card_id, "Parent Task")
    child1 = await task_service.create_task(sample_card_id, "Child Task 1", parent_id=parent.id)
    child2 = await task_service.create_task(sample_card_id, "Child Task 2", parent_id=parent.id)
    grandchild = await task_service.create_task(
        sample_card_id, "Grandchild Task", parent_id=child1.id
    )
    sibling = await task_service.create_task(sample_card_id, "Sibling Task")

    return {
        "parent_id": parent.id,
        "child1_id": child1.id,
        "child2_id": child2.id,
        "grandchild_id": grandchild.id,
        "sibling_id": sibling.id,
    }


@pytest.fixture
def make_task():
    """
    Factory fixture for creating TaskNode Pydantic models.

    Example:
        def test_something(make_task, sample_card_id):
            task = make_task(title="Custom Task", card_id=sample_card_id)
    """
    def _make_task(
        id: UUID = None,
        title: str = "Test Task",
        card_id: UUID = None,
        parent_id: UUID = None,
        order_index: int = 0,
        status: TaskStatus = TaskStatus.TODO,
        priority: TaskPriority = TaskPriority.MEDIUM,
        estimated_hours: float = None,
        actual_hours: float = None,
        completed_at: datetime = None,
    ) -> TaskNode:
        if status == TaskStatus.COMPLETED and completed_at is None:
            completed_at = datetime(2025, 1, 14, 10, 0, 0)
        return TaskNode(
            id=id or uuid4(),
            title=title,
            card_id=card_id or UUID("12345678-1234-5678-1234-567812345678"),
            parent_id=parent_id,
            order_index=order_index,
            status=status,
            priority=priority,
            estimated_hours=estimated_hours,
            actual_hours=actual_hours,
            completed_at=completed_at,
        )
    return _make_task

