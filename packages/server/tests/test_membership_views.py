"""
Tests for membership read models and a single user's relation to a task.
"""

from __future__ import annotations

import uuid
from datetime import datetime

import pytest

from app.core.errors import NotFoundError
from app.models.real_name import RealNameInfo
from app.services.errors import NotTaskParticipantYetError
from app.services.membership_views import MembershipViewService
from taskhub_shared.schemas.common import ApproveType, TaskSubmitterType

TEAM = TaskSubmitterType.TEAM.value
APPROVED = ApproveType.APPROVED.value


class TestMembershipViews:
    """Membership read models with member details."""

    @pytest.mark.asyncio
    async def test_list_filtered_by_approval(self, session, collaborators, make_task, make_membership):
        """Listing can be narrowed to one approval state."""
        task = await make_task()
        alice, bob = collaborators.users.add("alice"), collaborators.users.add("bob")
        await make_membership(task, alice.id, approved=APPROVED)
        await make_membership(task, bob.id)
        views = MembershipViewService(collaborators)

        everyone = await views.list_task_membership_views(session, task.id)
        assert [v.member.name for v in everyone] == ["alice", "bob"]

        approved = await views.list_task_membership_views(session, task.id, ApproveType.APPROVED)
        assert [v.member.member_id for v in approved] == [alice.id]

    @pytest.mark.asyncio
    async def test_empty_list(self, session, collaborators, make_task):
        task = await make_task()
        assert await MembershipViewService(collaborators).list_task_membership_views(session, task.id) == []

    @pytest.mark.asyncio
    async def test_not_a_participant(self, session, collaborators, make_task):
        """Views of non-participants raise not found."""
        task = await make_task()
        with pytest.raises(NotTaskParticipantYetError):
            await MembershipViewService(collaborators).get_task_membership_view(session, task.id, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_unknown_user_in_directory(self, session, collaborators, make_task, make_membership):
        task = await make_task()
        await make_membership(task, uuid.uuid4())
        with pytest.raises(NotFoundError):
            await MembershipViewService(collaborators).list_task_membership_views(session, task.id)

    @pytest.mark.asyncio
    async def test_masked_view_uses_participant_uuid(self, session, collaborators, make_task, make_membership):
        """Real-name tasks hide member ids behind participant uuids."""
        task = await make_task(require_real_name=True)
        membership = await make_membership(task, uuid.uuid4())
        membership.set_real_name_info(RealNameInfo(real_name="Alice"))
        session.add(membership)
        await session.commit()

        view = await MembershipViewService(collaborators).get_task_membership_view(
            session, task.id, membership.member_id
        )
        assert view.member.member_id is None
        assert view.member.participant_uuid == membership.participant_uuid
        assert view.real_name_info.real_name == "Alice"

    @pytest.mark.asyncio
    async def test_team_without_snapshot(self, session, collaborators, make_task, make_membership):
        """Teams joined without a snapshot have no member list."""
        task = await make_task(submitter_type=TEAM)
        team = collaborators.teams.add_team("Tries", [collaborators.users.add("alice")])
        await make_membership(task, team.id)
        view = await MembershipViewService(collaborators).get_task_membership_view(session, task.id, team.id)
        assert view.team_members == []


class TestUserParticipation:
    """What a user sees about their own participation."""

    @pytest.mark.asyncio
    async def test_individual_task(self, session, collaborators, make_task, make_membership):
        task = await make_task()
        alice = collaborators.users.add("alice")
        membership = await make_membership(task, alice.id, approved=APPROVED)

        info = await MembershipViewService(collaborators).get_user_participation_info(session, task.id, alice.id)
        assert info.has_participation is True
        [identity] = info.identities
        assert identity.id == membership.id
        assert identity.type == TaskSubmitterType.USER
        assert identity.can_submit is True

    @pytest.mark.asyncio
    async def test_no_participation(self, session, collaborators, make_task):
        task = await make_task()
        info = await MembershipViewService(collaborators).get_user_participation_info(
            session, task.id, uuid.uuid4()
        )
        assert info.has_participation is False
        assert info.identities == []

    @pytest.mark.asyncio
    async def test_team_task_lists_every_team(self, session, collaborators, make_task, make_membership):
        """Every team of the user with a membership is listed."""
        task = await make_task(submitter_type=TEAM)
        alice, bob = collaborators.users.add("alice"), collaborators.users.add("bob")
        owned = collaborators.teams.add_team("Owned", [alice])
        joined = collaborators.teams.add_team("Joined", [bob, alice])
        collaborators.teams.add_team("Idle", [alice])
        await make_membership(task, owned.id, approved=APPROVED)
        await make_membership(task, joined.id, approved=APPROVED)

        info = await MembershipViewService(collaborators).get_user_participation_info(session, task.id, alice.id)
        by_team = {i.member_id: i for i in info.identities}
        assert set(by_team) == {owned.id, joined.id}
        assert by_team[owned.id].can_submit is True
        assert by_team[owned.id].team_name == "Owned"
        assert by_team[joined.id].can_submit is False


class TestSubmittability:
    """Whether a user may submit for a task."""

    @pytest.mark.asyncio
    async def test_individual(self, session, collaborators, make_task, make_membership):
        task = await make_task()
        alice, bob = collaborators.users.add("alice"), collaborators.users.add("bob")
        await make_membership(task, alice.id, approved=APPROVED)
        await make_membership(task, bob.id)
        views = MembershipViewService(collaborators)

        assert await views.get_submittability(session, task, alice.id) == (True, None)
        assert await views.get_submittability(session, task, bob.id) == (False, None)
        assert await views.get_joined(session, task, bob.id) == (True, None)

    @pytest.mark.asyncio
    async def test_team(self, session, collaborators, make_task, make_membership):
        """Only admins of an approved team may submit."""
        task = await make_task(submitter_type=TEAM)
        alice, bob = collaborators.users.add("alice"), collaborators.users.add("bob")
        approved = collaborators.teams.add_team("Approved", [alice, bob])
        pending = collaborators.teams.add_team("Pending", [alice])
        await make_membership(task, approved.id, approved=APPROVED)
        await make_membership(task, pending.id)
        views = MembershipViewService(collaborators)

        can_submit, teams = await views.get_submittability(session, task, alice.id)
        assert can_submit is True
        assert [t.id for t in teams] == [approved.id]

        can_submit, teams = await views.get_submittability(session, task, bob.id)
        assert (can_submit, teams) == (False, [])

        joined, teams = await views.get_joined(session, task, alice.id)
        assert joined is True
        assert {t.id for t in teams} == {approved.id, pending.id}
        assert await views.is_task_participant(session, task.id, bob.id) is True


class TestUserDeadline:
    """Deadline visible to a user for a task."""

    DEADLINE = datetime(2026, 6, 1, 12, 0)

    @pytest.mark.asyncio
    async def test_approved_individual(self, session, collaborators, make_task, make_membership):
        task = await make_task()
        alice = collaborators.users.add("alice")
        await make_membership(task, alice.id, approved=APPROVED, deadline=self.DEADLINE)
        assert await MembershipViewService(collaborators).get_user_deadline(session, task.id, alice.id) == self.DEADLINE

    @pytest.mark.asyncio
    async def test_pending_has_no_deadline(self, session, collaborators, make_task, make_membership):
        """Pending memberships report no deadline."""
        task = await make_task()
        alice = collaborators.users.add("alice")
        await make_membership(task, alice.id, deadline=self.DEADLINE)
        assert await MembershipViewService(collaborators).get_user_deadline(session, task.id, alice.id) is None

    @pytest.mark.asyncio
    async def test_team_deadline(self, session, collaborators, make_task, make_membership):
        task = await make_task(submitter_type=TEAM)
        alice = collaborators.users.add("alice")
        pending = collaborators.teams.add_team("Pending", [alice])
        approved = collaborators.teams.add_team("Approved", [alice])
        await make_membership(task, pending.id)
        await make_membership(task, approved.id, approved=APPROVED, deadline=self.DEADLINE)
        assert await MembershipViewService(collaborators).get_user_deadline(session, task.id, alice.id) == self.DEADLINE
