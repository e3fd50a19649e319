"""
Interfaces the task engine consumes from the surrounding application.

Card storage, broadcast transport and time tracking live outside the engine;
these protocols describe the narrow slice of each that the engine calls.
"""

from typing import Mapping, Protocol
from uuid import UUID

from cardtasks.models import ChangeEvent


class CardDirectory(Protocol):
    """Card existence lookups, provided by the card CRUD layer."""

    async def card_exists(self, card_id: UUID) -> bool:
        ...


class ChangeNotifier(Protocol):
    """Sink for committed mutations, provided by the broadcast layer."""

    async def emit(self, event: ChangeEvent) -> None:
        ...


class TimeLedger(Protocol):
    """Logged hours per task node, provided by the time-tracking layer."""

    async def actual_hours(self, card_id: UUID) -> Mapping[UUID, float]:
        ...
