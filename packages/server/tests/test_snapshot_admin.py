"""
Tests for the snapshot maintenance entrypoints: admin command and worker jobs.
"""

from __future__ import annotations

import uuid

import pytest

from app.models.real_name import RealNameInfo
from app.repositories.memberships import TaskMembershipRepository
from app.scripts import snapshot_admin
from app.tasks.snapshot_backfill import backfill_team_snapshots, fix_task_real_name_snapshots
from taskhub_shared.schemas.common import TaskSubmitterType


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------


class TestCommandLine:
    """Argument parsing and collaborator loading."""

    def test_fix_task_arguments(self):
        task_id = uuid.uuid4()
        args = snapshot_admin.build_parser().parse_args(
            ["--collaborators", "wiring:build", "fix-task", str(task_id)]
        )
        assert args.command == "fix-task"
        assert args.task_id == task_id
        assert args.collaborators == "wiring:build"

    def test_backfill_arguments(self):
        args = snapshot_admin.build_parser().parse_args(
            ["--collaborators", "wiring:build", "backfill-team-snapshots"]
        )
        assert args.command == "backfill-team-snapshots"

    def test_task_id_must_be_uuid(self):
        """Non-uuid task ids are rejected by the parser."""
        with pytest.raises(SystemExit):
            snapshot_admin.build_parser().parse_args(["--collaborators", "wiring:build", "fix-task", "42"])

    def test_collaborators_required(self):
        with pytest.raises(SystemExit):
            snapshot_admin.build_parser().parse_args(["backfill-team-snapshots"])

    def test_unloadable_collaborators(self, capsys):
        """A bad factory path exits with status 2."""
        code = snapshot_admin.main(
            ["--collaborators", "no_such_wiring_module:build", "backfill-team-snapshots"]
        )
        assert code == 2
        assert "Cannot load collaborators" in capsys.readouterr().err

    def test_load_collaborators_calls_factory(self):
        """The factory named by module:callable is called."""
        assert snapshot_admin.load_collaborators("builtins:dict") == {}

    def test_load_collaborators_needs_callable_name(self):
        with pytest.raises(ValueError):
            snapshot_admin.load_collaborators("builtins")


class TestAdminCommands:
    """Admin commands run against the database."""

    @pytest.mark.asyncio
    async def test_fix_task(self, session, collaborators, make_task, make_membership, capsys):
        """Fixing a task reports the changed memberships."""
        task = await make_task(require_real_name=True)
        alice = collaborators.users.add("alice")
        collaborators.identities.verify(alice)
        membership = await make_membership(task, alice.id)

        assert await snapshot_admin.fix_task(task.id) == 1
        assert "Fixed 1 membership(s)" in capsys.readouterr().out

        await session.refresh(membership)
        assert membership.get_real_name_info().encrypted is True

    @pytest.mark.asyncio
    async def test_backfill(self, collaborators, make_task, make_membership, capsys):
        task = await make_task(submitter_type=TaskSubmitterType.TEAM.value)
        team = collaborators.teams.add_team("Tries", [collaborators.users.add("alice")])
        await make_membership(task, team.id)

        await snapshot_admin.backfill_team_snapshots()
        assert "updated 1" in capsys.readouterr().out


# ---------------------------------------------------------------------------
# Worker jobs
# ---------------------------------------------------------------------------


class TestWorkerJobs:
    """Worker entry points for snapshot maintenance."""

    @pytest.mark.asyncio
    async def test_fix_job_accepts_string_ids(self, session, collaborators, make_task, make_membership):
        """Job arguments arrive as strings."""
        task = await make_task(require_real_name=True)
        alice = collaborators.users.add("alice")
        collaborators.identities.verify(alice)
        membership = await make_membership(task, alice.id)
        membership.set_real_name_info(RealNameInfo(real_name="Alice"))
        session.add(membership)
        await session.commit()

        assert await fix_task_real_name_snapshots({}, str(task.id)) == 1

    @pytest.mark.asyncio
    async def test_backfill_job_reports_counts(self, session, collaborators, make_task, make_membership):
        task = await make_task(submitter_type=TaskSubmitterType.TEAM.value)
        team = collaborators.teams.add_team(
            "Tries", [collaborators.users.add("alice"), collaborators.users.add("bob")]
        )
        membership = await make_membership(task, team.id)

        result = await backfill_team_snapshots({})
        assert result["memberships_updated"] == 1
        assert result["snapshot_entries_created"] == 2

        stored = await TaskMembershipRepository(session).get(membership.id)
        await session.refresh(stored)
        assert len(stored.get_team_snapshot()) == 2
