"""
Task service for the cardtasks engine.

Implements the hierarchy operations on a card's task tree: create, update,
complete, move, delete and delete-all, plus listing and progress reads.
Each mutation runs under the card's lock in a single database transaction:
validate, mutate, propagate status, re-check invariants, commit, then emit
one change event.
"""

from contextlib import asynccontextmanager
from enum import Enum
from typing import (
    Any,
    AsyncGenerator,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Type,
    TypeVar,
    Union,
)
from uuid import UUID

from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cardtasks.config import Config
from cardtasks.database import DatabaseManager
from cardtasks.exceptions import (
    AlreadyCompletedError,
    CardNotFoundError,
    CircularReferenceError,
    InternalError,
    InvariantViolationError,
    ParentNotFoundError,
    TaskEngineError,
    TaskNotFoundError,
    TaskValidationError,
)
from cardtasks.logging_config import get_logger
from cardtasks.models import (
    ChangeEvent,
    ChangeEventType,
    ProgressSummary,
    TaskAttributes,
    TaskFilters,
    TaskNode,
    TaskPatch,
    TaskStatus,
)
from cardtasks.services.card_locks import CardLocks
from cardtasks.services.card_service import CardService
from cardtasks.services.collaborators import CardDirectory, ChangeNotifier, TimeLedger
from cardtasks.services.progress import summarize
from cardtasks.services.status_propagation import apply_status_change
from cardtasks.services.task_store import TaskStore, model_to_orm, orm_to_model
from cardtasks.services.tree_checks import (
    build_children_index,
    collect_subtree,
    tree_order,
    validate_sibling_order,
    would_create_cycle,
)
from cardtasks.utils.datetime_utils import utc_now

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_STATUS_RANK = {TaskStatus.TODO: 0, TaskStatus.IN_PROGRESS: 1, TaskStatus.COMPLETED: 2}


def _validate_input(model_cls: Type[ModelT], data: Union[ModelT, Mapping[str, Any], None]) -> ModelT:
    """
    Parse caller input into a model, mapping pydantic errors to TaskValidationError.
    """
    if isinstance(data, model_cls):
        return data
    try:
        return model_cls.model_validate(dict(data or {}))
    except ValidationError as e:
        logger.warning(f"Rejected {model_cls.__name__}: {e.error_count()} validation error(s)")
        raise TaskValidationError(str(e)) from e


def _sort_key(node: TaskNode, sort_by: str) -> Any:
    value = getattr(node, sort_by)
    if sort_by == "priority":
        return value.rank
    if sort_by == "status":
        return _STATUS_RANK[value]
    if sort_by == "title":
        return value.casefold()
    return value


def _matches(node: TaskNode, filters: TaskFilters) -> bool:
    if filters.status is not None and node.status != filters.status:
        return False
    if filters.priority is not None and node.priority != filters.priority:
        return False
    if filters.assignee is not None and node.assignee != filters.assignee:
        return False
    if filters.search:
        needle = filters.search.casefold()
        haystack = f"{node.title}\n{node.description or ''}".casefold()
        if needle not in haystack:
            return False
    return True


def _sorted(nodes: List[TaskNode], filters: TaskFilters) -> List[TaskNode]:
    """Sort by the requested field; nodes without a value always go last."""
    present = [n for n in nodes if getattr(n, filters.sort_by) is not None]
    missing = [n for n in nodes if getattr(n, filters.sort_by) is None]
    present.sort(key=lambda n: _sort_key(n, filters.sort_by), reverse=filters.sort_order == "desc")
    return present + missing


class TaskService:
    """
    Service layer for card task trees.

    Handles hierarchy mutations with invariant checks, status propagation
    and change notification, and read-side listing and progress.
    """

    def __init__(
        self,
        db: DatabaseManager,
        cards: Optional[CardDirectory] = None,
        notifier: Optional[ChangeNotifier] = None,
        time_ledger: Optional[TimeLedger] = None,
        lock_timeout: Optional[float] = None,
    ) -> None:
        """
        Initialize the task service.

        Args:
            db: Initialized database manager
            cards: Card existence lookups (defaults to the local card registry)
            notifier: Sink for committed change events
            time_ledger: Source of logged hours per node
            lock_timeout: Seconds to wait for a card's lock (None waits forever)
        """
        self.db = db
        self.cards = cards if cards is not None else CardService(db)
        self.notifier = notifier
        self.time_ledger = time_ledger
        self.locks = CardLocks(lock_timeout)
        # task_id -> card_id; card_id never changes so entries stay valid until delete
        self._card_ids: Dict[UUID, UUID] = {}

    @classmethod
    def from_config(
        cls,
        db: DatabaseManager,
        config: Config,
        cards: Optional[CardDirectory] = None,
        notifier: Optional[ChangeNotifier] = None,
        time_ledger: Optional[TimeLedger] = None,
    ) -> "TaskService":
        """Build a service using the [engine] section of the configuration."""
        engine_config = config.get_engine_config()
        if not engine_config['notify_enabled']:
            notifier = None
        return cls(
            db,
            cards=cards,
            notifier=notifier,
            time_ledger=time_ledger,
            lock_timeout=engine_config['lock_timeout'],
        )

    # ==============================================================================
    # TRANSACTION HELPERS
    # ==============================================================================

    @asynccontextmanager
    async def _transaction(self) -> AsyncGenerator[TaskStore, None]:
        """
        Open one session as one transaction and yield a store bound to it.

        Engine errors propagate unchanged; storage errors become InternalError.
        Either way the session rolls back, so nothing is written.
        """
        try:
            async with self.db.get_session() as session:
                yield TaskStore(session)
        except InternalError:
            logger.error("Task operation aborted", exc_info=True)
            raise
        except TaskEngineError as e:
            logger.warning(f"Task operation rejected: {e.code}: {e.message}")
            raise
        except SQLAlchemyError as e:
            logger.error(f"Storage failure in task operation: {e}", exc_info=True)
            raise InternalError(f"Storage failure: {e}") from e

    async def _resolve_card_id(self, task_id: UUID) -> UUID:
        """
        Find the card owning a task, needed before taking the card's lock.

        Raises:
            TaskNotFoundError: If the task does not exist
        """
        card_id = self._card_ids.get(task_id)
        if card_id is not None:
            return card_id

        async with self._transaction() as store:
            node_orm = await store.get_or_raise(task_id)
            card_id = UUID(node_orm.card_id)

        self._card_ids[task_id] = card_id
        return card_id

    @asynccontextmanager
    async def _hold_task_card(self, task_id: UUID) -> AsyncGenerator[UUID, None]:
        """
        Hold the lock of the card owning task_id and yield that card's ID.

        A task found missing under the lock was deleted through another
        service instance, so its cached card entry is dropped.
        """
        card_id = await self._resolve_card_id(task_id)
        try:
            async with self.locks.hold(card_id):
                yield card_id
        except (ParentNotFoundError, CardNotFoundError):
            raise
        except TaskNotFoundError:
            self._card_ids.pop(task_id, None)
            raise

    async def _card_exists(self, card_id: UUID) -> bool:
        try:
            return await self.cards.card_exists(card_id)
        except TaskEngineError:
            raise
        except Exception as e:
            logger.error(f"Card lookup failed for card {card_id}", exc_info=True)
            raise InternalError(f"Card lookup failed: {e}") from e

    async def _actual_hours(self, card_id: UUID) -> Mapping[UUID, float]:
        if self.time_ledger is None:
            return {}
        try:
            return await self.time_ledger.actual_hours(card_id)
        except Exception as e:
            logger.error(f"Time ledger lookup failed for card {card_id}", exc_info=True)
            raise InternalError(f"Time ledger lookup failed: {e}") from e

    async def _emit(
        self,
        event_type: ChangeEventType,
        card_id: UUID,
        node_id: Optional[UUID],
        payload: Dict[str, Any],
    ) -> None:
        """
        Hand a committed change to the notifier.

        Notification failures are logged only; the mutation has already
        committed and stays committed.
        """
        if self.notifier is None:
            return
        try:
            await self.notifier.emit(
                ChangeEvent(type=event_type, card_id=card_id, node_id=node_id, payload=payload)
            )
        except Exception as e:
            logger.warning(f"Failed to emit {event_type.value} for card {card_id}: {e}")

    # ==============================================================================
    # CREATE OPERATIONS
    # ==============================================================================

    async def create_task(
        self,
        card_id: UUID,
        title: str,
        parent_id: Optional[UUID] = None,
        attributes: Union[TaskAttributes, Mapping[str, Any], None] = None,
    ) -> TaskNode:
        """
        Create a new task, at root level or under a parent.

        The new task is appended after its last sibling.

        Args:
            card_id: Card that owns the tree
            title: Task title
            parent_id: Optional parent task UUID
            attributes: Optional description, status, priority,
                estimated_hours, assignee and due_date

        Returns:
            Created TaskNode

        Raises:
            TaskValidationError: If title or attributes are invalid
            CardNotFoundError: If a root task is created for an unknown card
            ParentNotFoundError: If the parent is missing or on another card
        """
        attrs = _validate_input(TaskAttributes, attributes)
        now = utc_now()
        candidate = _validate_input(
            TaskNode,
            {
                **attrs.model_dump(),
                "card_id": card_id,
                "parent_id": parent_id,
                "title": title,
                "created_at": now,
                "updated_at": now,
                "completed_at": now if attrs.status == TaskStatus.COMPLETED else None,
            },
        )
        card_id = candidate.card_id
        parent_id = candidate.parent_id

        logger.debug(f"Creating task: title='{candidate.title}', card_id={card_id}, parent_id={parent_id}")

        async with self.locks.hold(card_id):
            if parent_id is None and not await self._card_exists(card_id):
                logger.warning(f"Task creation rejected - card {card_id} not found")
                raise CardNotFoundError(f"Card with id {card_id} not found")

            async with self._transaction() as store:
                if parent_id is not None:
                    parent_orm = await store.get(parent_id)
                    if parent_orm is None or parent_orm.card_id != str(card_id):
                        raise ParentNotFoundError(
                            f"Parent task {parent_id} not found on card {card_id}"
                        )

                siblings = await store.query_by_parent(card_id, parent_id)
                order_index = max(s.order_index for s in siblings) + 1 if siblings else 0

                task = candidate.model_copy(update={"order_index": order_index})
                store.put(model_to_orm(task))
                await store.flush()

            self._card_ids[task.id] = card_id
            await self._emit(
                ChangeEventType.TASK_CREATED,
                card_id,
                task.id,
                {"task": task.model_dump(mode="json", exclude={"children"})},
            )

        logger.info(
            f"Created task: id={task.id}, title='{task.title}', "
            f"parent_id={parent_id}, order_index={task.order_index}"
        )
        return task

    # ==============================================================================
    # UPDATE OPERATIONS
    # ==============================================================================

    async def update_task(
        self,
        task_id: UUID,
        patch: Union[TaskPatch, Mapping[str, Any]],
    ) -> TaskNode:
        """
        Update a task's title, description, priority, status, estimate,
        assignee or due date.

        Status changes go through status propagation, so completing a task
        here can auto-complete its ancestors just like complete_task.

        Args:
            task_id: UUID of the task to update
            patch: Fields to change

        Returns:
            Updated TaskNode

        Raises:
            TaskValidationError: If the patch is empty or invalid
            TaskNotFoundError: If the task does not exist
        """
        patch = _validate_input(TaskPatch, patch)
        changes = patch.changes()
        if not changes:
            raise TaskValidationError("At least one field must be provided")

        async with self._hold_task_card(task_id) as card_id:
            async with self._transaction() as store:
                node_orm = await store.get_or_raise(task_id)
                now = utc_now()
                previous_status = TaskStatus(node_orm.status)
                new_status = changes.pop("status", None)

                for field, value in changes.items():
                    setattr(node_orm, field, value.value if isinstance(value, Enum) else value)
                node_orm.updated_at = now

                auto_completed = []
                if new_status is not None:
                    card_nodes = await store.list_for_card(card_id)
                    auto_completed = apply_status_change(node_orm, new_status, card_nodes, now)

                await store.flush()
                task = orm_to_model(node_orm)
                auto_completed_ids = [a.id for a in auto_completed]

            completed_now = (
                task.status == TaskStatus.COMPLETED and previous_status != TaskStatus.COMPLETED
            )
            await self._emit(
                ChangeEventType.TASK_COMPLETED if completed_now else ChangeEventType.TASK_UPDATED,
                card_id,
                task.id,
                {
                    "task": task.model_dump(mode="json", exclude={"children"}),
                    "changes": patch.model_dump(mode="json", exclude_unset=True),
                    "auto_completed": auto_completed_ids,
                },
            )

        logger.info(f"Updated task: id={task_id}, fields={sorted(patch.changes())}")
        return task

    async def complete_task(self, task_id: UUID) -> TaskNode:
        """
        Mark a task completed and cascade completion to its ancestors.

        Args:
            task_id: UUID of the task to complete

        Returns:
            Updated TaskNode

        Raises:
            TaskNotFoundError: If the task does not exist
            AlreadyCompletedError: If the task is already completed
        """
        async with self._hold_task_card(task_id) as card_id:
            async with self._transaction() as store:
                node_orm = await store.get_or_raise(task_id)
                if TaskStatus(node_orm.status) == TaskStatus.COMPLETED:
                    raise AlreadyCompletedError(f"Task {task_id} is already completed")

                card_nodes = await store.list_for_card(card_id)
                auto_completed = apply_status_change(
                    node_orm, TaskStatus.COMPLETED, card_nodes, utc_now()
                )
                await store.flush()
                task = orm_to_model(node_orm)
                auto_completed_ids = [a.id for a in auto_completed]

            await self._emit(
                ChangeEventType.TASK_COMPLETED,
                card_id,
                task.id,
                {
                    "task": task.model_dump(mode="json", exclude={"children"}),
                    "auto_completed": auto_completed_ids,
                },
            )

        logger.info(
            f"Completed task: id={task_id}, completed_at={task.completed_at.isoformat()}, "
            f"auto_completed={len(auto_completed_ids)}"
        )
        return task

    # ==============================================================================
    # HIERARCHY OPERATIONS
    # ==============================================================================

    async def move_task(
        self,
        task_id: UUID,
        new_parent_id: Optional[UUID],
        new_order_index: Optional[int] = None,
    ) -> TaskNode:
        """
        Move a task to a new parent and/or position.

        This method handles:
        - Moving under a different parent (None promotes to root level)
        - Reordering within the same parent
        - Compacting the old sibling group and shifting the new one

        Args:
            task_id: UUID of the task to move
            new_parent_id: New parent ID (None for root level)
            new_order_index: Position among the new siblings, clamped to
                [0, sibling count]; None appends at the end

        Returns:
            Updated TaskNode

        Raises:
            TaskNotFoundError: If the task does not exist
            ParentNotFoundError: If the new parent is missing or on another card
            CircularReferenceError: If the task would become its own ancestor
            InvariantViolationError: If sibling ordering is broken afterwards
        """
        async with self._hold_task_card(task_id) as card_id:
            async with self._transaction() as store:
                card_nodes = await store.list_for_card(card_id)
                by_id = {n.id: n for n in card_nodes}

                node_orm = by_id.get(str(task_id))
                if node_orm is None:
                    raise TaskNotFoundError(f"Task with id {task_id} not found")

                target = str(new_parent_id) if new_parent_id is not None else None
                if target is not None and target not in by_id:
                    raise ParentNotFoundError(
                        f"Parent task {new_parent_id} not found on card {card_id}"
                    )

                if would_create_cycle(card_nodes, node_orm.id, target):
                    raise CircularReferenceError(
                        f"Cannot move task {task_id} under {new_parent_id}: "
                        f"circular parent relationship"
                    )

                old_parent = node_orm.parent_id
                old_index = node_orm.order_index
                children = build_children_index(card_nodes)

                # Remove from the old group and close the gap
                old_group = [n for n in children.get(old_parent, []) if n is not node_orm]
                for idx, sibling in enumerate(old_group):
                    sibling.order_index = idx

                if target == old_parent:
                    new_group = old_group
                else:
                    new_group = [n for n in children.get(target, []) if n is not node_orm]

                if new_order_index is None:
                    final_index = len(new_group)
                else:
                    final_index = min(max(0, new_order_index), len(new_group))

                new_group.insert(final_index, node_orm)
                node_orm.parent_id = target
                for idx, sibling in enumerate(new_group):
                    sibling.order_index = idx
                node_orm.updated_at = utc_now()

                for group_parent in {old_parent, target}:
                    if not validate_sibling_order(card_nodes, node_orm.card_id, group_parent):
                        raise InvariantViolationError(
                            f"Sibling order broken under parent {group_parent} "
                            f"after moving task {task_id}"
                        )

                await store.flush()
                task = orm_to_model(node_orm)

            await self._emit(
                ChangeEventType.TASK_MOVED,
                card_id,
                task.id,
                {
                    "task": task.model_dump(mode="json", exclude={"children"}),
                    "old_parent_id": old_parent,
                    "old_order_index": old_index,
                    "new_parent_id": target,
                    "new_order_index": final_index,
                },
            )

        logger.info(
            f"Moved task: id={task_id}, parent {old_parent} -> {target}, "
            f"order_index {old_index} -> {final_index}"
        )
        return task

    # ==============================================================================
    # DELETE OPERATIONS
    # ==============================================================================

    async def delete_task(self, task_id: UUID) -> None:
        """
        Delete a task and all its descendants (cascade delete).

        Descendants are removed deepest first and the former siblings of the
        task are reindexed densely.

        Args:
            task_id: UUID of the task to delete

        Raises:
            TaskNotFoundError: If the task does not exist
        """
        async with self._hold_task_card(task_id) as card_id:
            async with self._transaction() as store:
                card_nodes = await store.list_for_card(card_id)
                subtree = collect_subtree(card_nodes, str(task_id))
                if not subtree:
                    raise TaskNotFoundError(f"Task with id {task_id} not found")

                root = subtree[0]
                deleted_ids = {n.id for n in subtree}

                for node_orm in reversed(subtree):
                    await store.delete(node_orm)

                remaining = [n for n in card_nodes if n.id not in deleted_ids]
                siblings = build_children_index(remaining).get(root.parent_id, [])
                for idx, sibling in enumerate(siblings):
                    sibling.order_index = idx

                if not validate_sibling_order(remaining, root.card_id, root.parent_id):
                    raise InvariantViolationError(
                        f"Sibling order broken under parent {root.parent_id} "
                        f"after deleting task {task_id}"
                    )

                await store.flush()
                parent_id = root.parent_id
                title = root.title
                deleted_order = [n.id for n in subtree]

            for node_id in deleted_order:
                self._card_ids.pop(UUID(node_id), None)

            await self._emit(
                ChangeEventType.TASK_DELETED,
                card_id,
                task_id,
                {"parent_id": parent_id, "deleted_ids": deleted_order},
            )

        logger.info(f"Deleted task: id={task_id}, title='{title}', descendants={len(deleted_order) - 1}")

    async def delete_all_tasks(
        self,
        card_id: UUID,
        on_cleared: Optional[Callable[[AsyncSession], Awaitable[None]]] = None,
    ) -> int:
        """
        Remove every task of a card; used when the card itself is deleted.

        Args:
            card_id: Card whose tree is removed
            on_cleared: Optional coroutine run in the same transaction once
                the tasks are gone, e.g. to remove the card row itself

        Returns:
            Number of tasks deleted
        """
        async with self.locks.hold(card_id):
            async with self._transaction() as store:
                count = await store.delete_for_card(card_id)
                if on_cleared is not None:
                    await on_cleared(store.session)

            self._card_ids = {
                task_id: owner for task_id, owner in self._card_ids.items() if owner != card_id
            }
            await self._emit(ChangeEventType.TASKS_CLEARED, card_id, None, {"count": count})

        logger.info(f"Deleted all tasks for card {card_id}: count={count}")
        return count

    # ==============================================================================
    # READ OPERATIONS
    # ==============================================================================

    async def _load_card(self, card_id: UUID) -> List[TaskNode]:
        """Load every node of a card as models, with logged hours attached."""
        async with self._transaction() as store:
            rows = await store.list_for_card(card_id)

        hours = await self._actual_hours(card_id)
        nodes = [orm_to_model(row, hours.get(UUID(row.id))) for row in rows]
        for node in nodes:
            self._card_ids[node.id] = card_id
        return nodes

    async def get_task(self, task_id: UUID) -> TaskNode:
        """
        Get a task by its ID.

        Raises:
            TaskNotFoundError: If the task does not exist
        """
        async with self._transaction() as store:
            node_orm = await store.get_or_raise(task_id)
            card_id = UUID(node_orm.card_id)

        self._card_ids[task_id] = card_id
        hours = await self._actual_hours(card_id)
        return orm_to_model(node_orm, hours.get(task_id))

    async def list_tasks(
        self,
        card_id: UUID,
        filters: Union[TaskFilters, Mapping[str, Any], None] = None,
    ) -> List[TaskNode]:
        """
        List a card's tasks, flat or as a hierarchy.

        Flat listings with the default sort follow tree order (depth-first,
        siblings by order_index). Hierarchical listings return root nodes
        with nested ``children``; a node is kept when it or any descendant
        matches the filters, and each sibling level is sorted.

        Args:
            card_id: Card whose tasks are listed
            filters: Status, priority, assignee, text search and sort options

        Returns:
            List of TaskNode instances
        """
        filters = _validate_input(TaskFilters, filters)
        nodes = await self._load_card(card_id)

        if filters.include_hierarchy:
            return self._build_hierarchy(nodes, filters)

        matching = [n for n in tree_order(nodes) if _matches(n, filters)]
        if filters.sort_by == "order_index":
            return list(reversed(matching)) if filters.sort_order == "desc" else matching
        return _sorted(matching, filters)

    def _build_hierarchy(self, nodes: List[TaskNode], filters: TaskFilters) -> List[TaskNode]:
        children = build_children_index(nodes)

        def build(node: TaskNode) -> Optional[TaskNode]:
            built_children = [
                child for child in (build(c) for c in children.get(node.id, [])) if child is not None
            ]
            if not built_children and not _matches(node, filters):
                return None
            return node.model_copy(update={"children": _sorted(built_children, filters)})

        roots = [root for root in (build(r) for r in children.get(None, [])) if root is not None]
        return _sorted(roots, filters)

    async def get_progress(
        self,
        card_id: Optional[UUID] = None,
        node_id: Optional[UUID] = None,
    ) -> ProgressSummary:
        """
        Compute recursive progress for a whole card or one node's descendants.

        Exactly one of card_id and node_id must be given.

        Raises:
            TaskValidationError: If neither or both targets are given
            TaskNotFoundError: If node_id does not exist
        """
        if (card_id is None) == (node_id is None):
            raise TaskValidationError("Provide exactly one of card_id or node_id")

        if node_id is not None:
            card_id = await self._resolve_card_id(node_id)

        nodes = await self._load_card(card_id)
        if node_id is not None and not any(n.id == node_id for n in nodes):
            self._card_ids.pop(node_id, None)
            raise TaskNotFoundError(f"Task with id {node_id} not found")

        summary = summarize(nodes, card_id, node_id)
        logger.debug(
            f"Progress calculated: card_id={card_id}, node_id={node_id}, "
            f"completed={summary.completed}, total={summary.total}"
        )
        return summary
