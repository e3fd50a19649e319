"""
Card directory for the cardtasks engine.

Minimal card registry backed by the cards table. It answers the engine's
card existence checks and, on card deletion, removes the card's task tree
through the engine.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Optional
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from cardtasks.database import CardORM, DatabaseManager
from cardtasks.exceptions import CardNotFoundError
from cardtasks.logging_config import get_logger
from cardtasks.models import Card
from cardtasks.utils.datetime_utils import utc_now

if TYPE_CHECKING:
    from cardtasks.services.task_service import TaskService

logger = get_logger(__name__)


class CardService:
    """
    Service layer for card registration.

    Implements the CardDirectory protocol consumed by TaskService.
    """

    def __init__(self, db: DatabaseManager) -> None:
        """
        Initialize the card service.

        Args:
            db: Initialized database manager
        """
        self.db = db

    @staticmethod
    def _orm_to_pydantic(card_orm: CardORM) -> Card:
        return Card(
            id=UUID(card_orm.id),
            title=card_orm.title,
            created_at=card_orm.created_at,
        )

    async def create_card(
        self,
        title: str,
        card_id: Optional[UUID] = None,
        created_at: Optional[datetime] = None,
    ) -> Card:
        """
        Register a new card.

        Args:
            title: Card title
            card_id: Optional UUID (auto-generated if not provided)
            created_at: Optional creation timestamp

        Returns:
            Created Card model
        """
        card = Card(id=card_id or uuid4(), title=title, created_at=created_at or utc_now())

        async with self.db.get_session() as session:
            session.add(CardORM(id=str(card.id), title=card.title, created_at=card.created_at))

        logger.info(f"Created card: id={card.id}, title='{card.title}'")
        return card

    async def get_card(self, card_id: UUID) -> Optional[Card]:
        """Get a card by ID, or None."""
        async with self.db.get_session() as session:
            card_orm = await session.get(CardORM, str(card_id))
            return self._orm_to_pydantic(card_orm) if card_orm else None

    async def card_exists(self, card_id: UUID) -> bool:
        return await self.get_card(card_id) is not None

    async def delete_card(self, card_id: UUID, task_service: "TaskService") -> int:
        """
        Delete a card together with its whole task tree.

        The card row is removed in the same locked transaction as the tree,
        so no task can be added to the card in between.

        Args:
            card_id: Card to delete
            task_service: Engine that owns the card's task tree

        Returns:
            Number of task nodes removed

        Raises:
            CardNotFoundError: If the card does not exist
        """
        if not await self.card_exists(card_id):
            raise CardNotFoundError(f"Card with id {card_id} not found")

        async def delete_row(session: AsyncSession) -> None:
            card_orm = await session.get(CardORM, str(card_id))
            if card_orm is None:
                raise CardNotFoundError(f"Card with id {card_id} not found")
            await session.delete(card_orm)

        removed = await task_service.delete_all_tasks(card_id, on_cleared=delete_row)

        logger.info(f"Deleted card: id={card_id}, tasks_removed={removed}")
        return removed
