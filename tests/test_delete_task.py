"""
Tests for task deletion.

Tests cover cascade deletion of descendants, dense reindexing of the
remaining siblings, and clearing a whole card.
"""

from uuid import uuid4

import pytest

from cardtasks.exceptions import InvariantViolationError, TaskNotFoundError
from cardtasks.models import ChangeEventType
from cardtasks.services.tree_checks import find_order_violations
from tests.helpers import snapshot


class TestDeleteTask:
    """Tests for single-task (subtree) deletion."""

    @pytest.mark.asyncio
    async def test_delete_leaf(self, task_service, task_hierarchy, sample_card_id):
        await task_service.delete_task(task_hierarchy["grandchild_id"])

        tasks = await task_service.list_tasks(sample_card_id)
        assert task_hierarchy["grandchild_id"] not in {t.id for t in tasks}
        assert len(tasks) == 4

    @pytest.mark.asyncio
    async def test_delete_cascades_to_descendants(self, task_service, task_hierarchy, sample_card_id):
        """Test deleting Parent removes its child and grandchild too."""
        await task_service.delete_task(task_hierarchy["parent_id"])

        tasks = await task_service.list_tasks(sample_card_id)
        assert [t.title for t in tasks] == ["Sibling Task"]

        for key in ("parent_id", "child1_id", "child2_id", "grandchild_id"):
            with pytest.raises(TaskNotFoundError):
                await task_service.get_task(task_hierarchy[key])

    @pytest.mark.asyncio
    async def test_remaining_siblings_reindexed(self, task_service, task_hierarchy, sample_card_id):
        """Test the sibling after the deleted root moves up to index 0."""
        await task_service.delete_task(task_hierarchy["parent_id"])

        sibling = await task_service.get_task(task_hierarchy["sibling_id"])
        assert sibling.order_index == 0
        assert find_order_violations(await task_service.list_tasks(sample_card_id)) == []

    @pytest.mark.asyncio
    async def test_delete_middle_child_reindexes(self, task_service, sample_card, sample_card_id):
        parent = await task_service.create_task(sample_card_id, "Parent")
        kids = [
            await task_service.create_task(sample_card_id, f"Kid {i}", parent_id=parent.id)
            for i in range(4)
        ]

        await task_service.delete_task(kids[1].id)

        tasks = await task_service.list_tasks(sample_card_id)
        remaining = [t for t in tasks if t.parent_id == parent.id]
        assert [t.title for t in remaining] == ["Kid 0", "Kid 2", "Kid 3"]
        assert [t.order_index for t in remaining] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_delete_missing_task(self, task_service, sample_card):
        with pytest.raises(TaskNotFoundError):
            await task_service.delete_task(uuid4())

    @pytest.mark.asyncio
    async def test_delete_twice(self, task_service, task_hierarchy):
        await task_service.delete_task(task_hierarchy["child2_id"])
        with pytest.raises(TaskNotFoundError):
            await task_service.delete_task(task_hierarchy["child2_id"])

    @pytest.mark.asyncio
    async def test_delete_emits_event(self, task_service, change_feed, task_hierarchy, sample_card_id):
        change_feed.clear_all()
        await task_service.delete_task(task_hierarchy["child1_id"])

        event = change_feed.get_all()[0]
        assert event.type == ChangeEventType.TASK_DELETED
        assert event.node_id == task_hierarchy["child1_id"]
        assert event.payload["parent_id"] == str(task_hierarchy["parent_id"])
        assert event.payload["deleted_ids"] == [
            str(task_hierarchy["child1_id"]), str(task_hierarchy["grandchild_id"])
        ]

    @pytest.mark.asyncio
    async def test_progress_after_delete(self, task_service, task_hierarchy, sample_card_id):
        await task_service.complete_task(task_hierarchy["sibling_id"])
        await task_service.delete_task(task_hierarchy["parent_id"])

        summary = await task_service.get_progress(card_id=sample_card_id)
        assert summary.total == 1
        assert summary.completion_percentage == 100.0


class TestDeleteAllTasks:
    """Tests for clearing a card's whole tree."""

    @pytest.mark.asyncio
    async def test_delete_all(self, task_service, task_hierarchy, sample_card_id):
        count = await task_service.delete_all_tasks(sample_card_id)

        assert count == 5
        assert await task_service.list_tasks(sample_card_id) == []

    @pytest.mark.asyncio
    async def test_delete_all_leaves_other_cards(
        self, task_service, card_service, task_hierarchy, sample_card_id
    ):
        other_card = await card_service.create_card("Other card")
        kept = await task_service.create_task(other_card.id, "Kept")

        await task_service.delete_all_tasks(sample_card_id)

        assert [t.id for t in await task_service.list_tasks(other_card.id)] == [kept.id]

    @pytest.mark.asyncio
    async def test_delete_all_on_empty_card(self, task_service, sample_card, sample_card_id):
        assert await task_service.delete_all_tasks(sample_card_id) == 0

    @pytest.mark.asyncio
    async def test_deleted_ids_are_gone(self, task_service, task_hierarchy, sample_card_id):
        await task_service.delete_all_tasks(sample_card_id)

        with pytest.raises(TaskNotFoundError):
            await task_service.update_task(task_hierarchy["sibling_id"], {"title": "Gone"})

    @pytest.mark.asyncio
    async def test_delete_all_emits_event(self, task_service, change_feed, task_hierarchy, sample_card_id):
        change_feed.clear_all()
        await task_service.delete_all_tasks(sample_card_id)

        event = change_feed.get_all()[0]
        assert event.type == ChangeEventType.TASKS_CLEARED
        assert event.node_id is None
        assert event.payload == {"count": 5}


class TestDeleteAbort:
    """A failed sibling-order check after a delete rolls the whole delete back."""

    @pytest.mark.asyncio
    async def test_broken_order_aborts_delete(
        self, task_service, change_feed, task_hierarchy, sample_card_id, monkeypatch
    ):
        before = await snapshot(task_service, sample_card_id)
        change_feed.clear_all()
        monkeypatch.setattr(
            "cardtasks.services.task_service.validate_sibling_order", lambda *args: False
        )

        with pytest.raises(InvariantViolationError) as exc_info:
            await task_service.delete_task(task_hierarchy["child1_id"])

        assert exc_info.value.code == "INVARIANT_VIOLATION"
        assert await snapshot(task_service, sample_card_id) == before
        assert change_feed.get_all() == []

    @pytest.mark.asyncio
    async def test_aborted_delete_keeps_task_reachable(
        self, task_service, task_hierarchy, monkeypatch
    ):
        with monkeypatch.context() as m:
            m.setattr(
                "cardtasks.services.task_service.validate_sibling_order", lambda *args: False
            )
            with pytest.raises(InvariantViolationError):
                await task_service.delete_task(task_hierarchy["child1_id"])

        grandchild = await task_service.get_task(task_hierarchy["grandchild_id"])
        assert grandchild.parent_id == task_hierarchy["child1_id"]

        await task_service.delete_task(task_hierarchy["child1_id"])
        with pytest.raises(TaskNotFoundError):
            await task_service.get_task(task_hierarchy["grandchild_id"])
