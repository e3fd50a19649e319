"""Entry point for the cardtasks command-line tool.

This module allows running cardtasks as a module:
    python -m cardtasks tree <card-id>

Or as an installed command:
    cardtasks progress <card-id>
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional
from uuid import UUID

from cardtasks.config import Config
from cardtasks.database import init_database
from cardtasks.exceptions import TaskEngineError
from cardtasks.logging_config import get_logger, setup_logging
from cardtasks.models import TaskFilters, TaskNode, TaskStatus
from cardtasks.services.task_service import TaskService
from cardtasks.utils.datetime_utils import format_timestamp

logger = get_logger(__name__)

_STATUS_MARKERS = {
    TaskStatus.TODO: "[ ]",
    TaskStatus.IN_PROGRESS: "[~]",
    TaskStatus.COMPLETED: "[x]",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="cardtasks", description="Inspect card task trees")
    parser.add_argument("--database-url", help="SQLAlchemy database URL (overrides config)")
    parser.add_argument("--config", type=str, help="Path to config.ini")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR or CRITICAL")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("init-db", help="Create the database tables")

    tree = subparsers.add_parser("tree", help="Print a card's task hierarchy")
    tree.add_argument("card_id", type=UUID)
    tree.add_argument("--status", choices=[s.value for s in TaskStatus])

    progress = subparsers.add_parser("progress", help="Print progress for a card or task")
    progress.add_argument("card_id", type=UUID)
    progress.add_argument("--node", type=UUID, help="Summarize one task's descendants instead")

    return parser


def render_tree(nodes: List[TaskNode], depth: int = 0) -> List[str]:
    """Render a hierarchical listing as indented lines."""
    lines = []
    for node in nodes:
        marker = _STATUS_MARKERS[node.status]
        suffix = f" (done {format_timestamp(node.completed_at)})" if node.completed_at else ""
        lines.append(f"{'  ' * depth}{marker} {node.title} [{node.priority.value}]{suffix}")
        lines.extend(render_tree(node.children, depth + 1))
    return lines


async def _run(parsed: argparse.Namespace, config: Config) -> int:
    db_config = config.get_database_config()
    db = await init_database(parsed.database_url or db_config['url'], echo=db_config['echo'])
    try:
        if parsed.command == "init-db":
            print(f"Database ready: {db.database_url}")
            return 0

        service = TaskService.from_config(db, config)

        if parsed.command == "tree":
            filters = TaskFilters(include_hierarchy=True, status=parsed.status)
            nodes = await service.list_tasks(parsed.card_id, filters)
            for line in render_tree(nodes) or ["(no tasks)"]:
                print(line)
            return 0

        if parsed.node is not None:
            summary = await service.get_progress(node_id=parsed.node)
        else:
            summary = await service.get_progress(card_id=parsed.card_id)
        print(
            f"{summary.completed}/{summary.total} completed "
            f"({summary.completion_percentage}%), "
            f"{summary.in_progress} in progress, {summary.todo} todo"
        )
        print(
            f"Hours: {summary.total_actual_hours} logged / "
            f"{summary.total_estimated_hours} estimated"
        )
        for category in summary.categories:
            print(f"  {category.category}: {category.completed}/{category.total} "
                  f"({category.progress_percentage}%)")
        return 0
    finally:
        await db.close()


def main(args: Optional[list[str]] = None) -> int:
    """Main entry point for cardtasks.

    Args:
        args: Command-line arguments (defaults to sys.argv)

    Returns:
        Exit code (0 for success, non-zero for error)
    """
    if args is None:
        args = sys.argv[1:]

    parsed = build_parser().parse_args(args)
    setup_logging(log_level=parsed.log_level)

    config = Config(Path(parsed.config) if parsed.config else None)

    try:
        return asyncio.run(_run(parsed, config))
    except TaskEngineError as e:
        print(f"Error [{e.code}]: {e.message}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        logger.info("cardtasks interrupted by user (Ctrl+C)")
        return 130
    except Exception:
        logger.error("Error running cardtasks", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
