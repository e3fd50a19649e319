"""
Task node store for the cardtasks engine.

Durable CRUD for task nodes by id, by parent and by card on top of an
async SQLAlchemy session. The store never commits; the caller's session
block owns the transaction.
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from cardtasks.database import TaskNodeORM
from cardtasks.exceptions import TaskNotFoundError
from cardtasks.logging_config import get_logger
from cardtasks.models import TaskNode

logger = get_logger(__name__)


def orm_to_model(node_orm: TaskNodeORM, actual_hours: Optional[float] = None) -> TaskNode:
    """
    Convert TaskNodeORM to the Pydantic TaskNode model.

    Args:
        node_orm: SQLAlchemy ORM task node
        actual_hours: Hours logged against the node by the time ledger

    Returns:
        Pydantic TaskNode instance
    """
    return TaskNode.model_validate(
        {
            "id": UUID(node_orm.id),
            "card_id": UUID(node_orm.card_id),
            "parent_id": UUID(node_orm.parent_id) if node_orm.parent_id else None,
            "title": node_orm.title,
            "description": node_orm.description,
            "status": node_orm.status,
            "priority": node_orm.priority,
            "order_index": node_orm.order_index,
            "estimated_hours": node_orm.estimated_hours,
            "actual_hours": actual_hours,
            "assignee": node_orm.assignee,
            "due_date": node_orm.due_date,
            "created_at": node_orm.created_at,
            "updated_at": node_orm.updated_at,
            "completed_at": node_orm.completed_at,
        }
    )


def model_to_orm(node: TaskNode) -> TaskNodeORM:
    """
    Convert a Pydantic TaskNode to TaskNodeORM.

    actual_hours is not persisted; it belongs to the time ledger.
    """
    return TaskNodeORM(
        id=str(node.id),
        card_id=str(node.card_id),
        parent_id=str(node.parent_id) if node.parent_id else None,
        title=node.title,
        description=node.description,
        status=node.status.value,
        priority=node.priority.value,
        order_index=node.order_index,
        estimated_hours=node.estimated_hours,
        assignee=node.assignee,
        due_date=node.due_date,
        created_at=node.created_at,
        updated_at=node.updated_at,
        completed_at=node.completed_at,
    )


class TaskStore:
    """
    Persistence operations for task nodes.

    All lookups return ORM rows attached to the session so the caller can
    mutate them in place and let the session flush the changes.
    """

    def __init__(self, session: AsyncSession) -> None:
        """
        Initialize the store with a database session.

        Args:
            session: Active async database session
        """
        self.session = session

    async def get(self, task_id: UUID) -> Optional[TaskNodeORM]:
        """Get a task node by ID, or None."""
        return await self.session.get(TaskNodeORM, str(task_id))

    async def get_or_raise(self, task_id: UUID) -> TaskNodeORM:
        """
        Get a task node by ID or raise an exception.

        Raises:
            TaskNotFoundError: If the node does not exist
        """
        node_orm = await self.get(task_id)
        if node_orm is None:
            raise TaskNotFoundError(f"Task with id {task_id} not found")
        return node_orm

    def put(self, node_orm: TaskNodeORM) -> None:
        """Stage a new node for insertion."""
        self.session.add(node_orm)

    async def delete(self, node_orm: TaskNodeORM) -> None:
        """Stage a node for deletion."""
        await self.session.delete(node_orm)

    async def query_by_parent(self, card_id: UUID, parent_id: Optional[UUID]) -> List[TaskNodeORM]:
        """
        Get the sibling group under parent_id, ordered by order_index.

        Args:
            card_id: Owning card
            parent_id: Parent task ID (None for roots)
        """
        query = select(TaskNodeORM).where(TaskNodeORM.card_id == str(card_id))
        if parent_id is not None:
            query = query.where(TaskNodeORM.parent_id == str(parent_id))
        else:
            query = query.where(TaskNodeORM.parent_id.is_(None))

        result = await self.session.execute(query.order_by(TaskNodeORM.order_index))
        return list(result.scalars().all())

    async def list_for_card(self, card_id: UUID) -> List[TaskNodeORM]:
        """Get every node of a card, ordered by order_index."""
        result = await self.session.execute(
            select(TaskNodeORM)
            .where(TaskNodeORM.card_id == str(card_id))
            .order_by(TaskNodeORM.order_index)
        )
        return list(result.scalars().all())

    async def delete_for_card(self, card_id: UUID) -> int:
        """
        Delete every node of a card.

        Returns:
            Number of nodes deleted
        """
        result = await self.session.execute(
            delete(TaskNodeORM).where(TaskNodeORM.card_id == str(card_id))
        )
        count = result.rowcount or 0
        logger.debug(f"Deleted {count} task nodes for card {card_id}")
        return count

    async def flush(self) -> None:
        await self.session.flush()
