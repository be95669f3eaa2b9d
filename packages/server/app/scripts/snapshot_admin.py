"""
Admin commands for real-name snapshots.

    python -m app.scripts.snapshot_admin --collaborators myhost.wiring:build fix-task <task_id>
    python -m app.scripts.snapshot_admin --collaborators myhost.wiring:build backfill-team-snapshots

``--collaborators`` names a zero-argument callable returning the
``Collaborators`` used to reach the team, user, identity, encryption and
rank services.
"""

import argparse
import asyncio
import importlib
import sys
import uuid

from app.core.database import dispose_engine, get_session_context
from app.core.protocols import Collaborators, set_collaborators
from app.services.snapshots import RealNameSnapshotManager


def load_collaborators(path: str) -> Collaborators:
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Expected 'module:callable', got {path!r}")
    factory = getattr(importlib.import_module(module_name), attr)
    return factory()


async def fix_task(task_id: uuid.UUID) -> int:
    async with get_session_context() as session:
        updated = await RealNameSnapshotManager().fix_real_name_info_for_task(session, task_id)
    print(f"Fixed {updated} membership(s) of task {task_id}.")
    return updated


async def backfill_team_snapshots() -> None:
    result = await RealNameSnapshotManager().create_missing_team_snapshots_for_all_tasks()
    print(
        f"Checked {result.memberships_checked}, updated {result.memberships_updated}, "
        f"created {result.snapshot_entries_created} entries, "
        f"{result.errors_encountered} error(s)."
    )


async def run(args: argparse.Namespace) -> None:
    try:
        if args.command == "fix-task":
            await fix_task(args.task_id)
        else:
            await backfill_team_snapshots()
    finally:
        await dispose_engine()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Maintain task real-name snapshots.")
    parser.add_argument(
        "--collaborators",
        required=True,
        help="module:callable returning the external service clients",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    fix = sub.add_parser("fix-task", help="Encrypt missing or plaintext snapshots of one task")
    fix.add_argument("task_id", type=uuid.UUID, help="Task id")

    sub.add_parser(
        "backfill-team-snapshots",
        help="Create placeholder snapshots for team memberships that have none",
    )
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    try:
        set_collaborators(load_collaborators(args.collaborators))
    except (ImportError, AttributeError, ValueError) as exc:
        print(f"Cannot load collaborators: {exc}", file=sys.stderr)
        return 2
    asyncio.run(run(args))
    return 0


if __name__ == "__main__":
    sys.exit(main())
