"""
Tests for the bulk delete job runner.
"""

import pytest

from sitedesk.jobs import JobStatus, JobType, exclude_owner
from sitedesk.jobs.models import BatchOperation, BatchStatus, ResultStatus
from sitedesk.platform import Member

SITE = "site-1"


def _logs(state, operation):
    return [log for log in state.logs if log.type == operation]


class TestExcludeOwner:
    """Tests for owner filtering."""

    def test_owner_removed(self, member_factory):
        """Test the member with the owner's contact is dropped."""
        members = member_factory(3)
        assert [m.id for m in exclude_owner(members, "c2")] == ["m1", "m3"]

    def test_no_owner_keeps_everyone(self, member_factory):
        """Test nothing is dropped without an owner contact."""
        members = member_factory(3)
        assert exclude_owner(members, None) == members


class TestBulkDeleteRunner:
    """Tests for bulk delete jobs driven through the registry."""

    @pytest.mark.asyncio
    async def test_partial_batch_success(self, registry, platform, member_factory):
        """Test only members the platform deleted proceed to contact deletion."""
        platform.undeletable = {"m2"}

        registry.start(SITE, JobType.BULK_DELETE, member_factory(2))
        state = await registry.wait(SITE, JobType.BULK_DELETE)

        member_logs = _logs(state, BatchOperation.MEMBER_DELETION)
        contact_logs = _logs(state, BatchOperation.CONTACT_DELETION)
        assert len(member_logs) == 1
        assert member_logs[0].details == "1 of 2 members deleted."
        assert member_logs[0].status == BatchStatus.MIXED
        assert len(contact_logs) == 1
        assert contact_logs[0].status == BatchStatus.SUCCESS
        assert [r.contact_id for r in contact_logs[0].contact_results] == ["c1"]
        assert platform.deleted_contacts == ["c1"]
        assert state.status == JobStatus.COMPLETED
        assert state.progress == 100
        assert state.message == "Deletion complete: 1 out of 2 selected members were processed."

    @pytest.mark.asyncio
    async def test_owner_contact_never_deleted(self, registry, platform, member_factory):
        """Test the owner's member and contact are never referenced in deletion calls."""
        platform.owner_contact_id = "c3"

        registry.start(SITE, JobType.BULK_DELETE, member_factory(5), {"batch_size": 2})
        state = await registry.wait(SITE, JobType.BULK_DELETE)

        sent_ids = [member_id for call in platform.bulk_calls for member_id in call]
        assert "m3" not in sent_ids
        assert sent_ids == ["m1", "m2", "m4", "m5"]
        assert "c3" not in platform.deleted_contacts
        assert state.total == 4
        assert state.status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_owner_cannot_be_overridden_by_settings(self, registry, platform):
        """Test a caller-supplied owner id never replaces the looked-up owner."""
        members = [
            Member(id="m1", contact_id="c1", login_email="a@x.com"),
            Member(id="m2", contact_id="owner-contact", login_email="owner@x.com"),
        ]

        registry.start(SITE, JobType.BULK_DELETE, members, {"owner_contact_id": "someone-else"})
        state = await registry.wait(SITE, JobType.BULK_DELETE)

        assert platform.bulk_calls == [["m1"]]
        assert "owner-contact" not in platform.deleted_contacts
        assert platform.deleted_contacts == ["c1"]
        assert state.status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_log_counts_follow_per_item_results(self, registry, platform, member_factory):
        """Test the member log reports members actually deleted, not the platform's total."""
        platform.undeletable = {"m2"}
        platform.reported_total = 2

        registry.start(SITE, JobType.BULK_DELETE, member_factory(2))
        state = await registry.wait(SITE, JobType.BULK_DELETE)

        member_log = _logs(state, BatchOperation.MEMBER_DELETION)[0]
        assert member_log.details == "1 of 2 members deleted."
        assert member_log.status == BatchStatus.MIXED
        assert platform.deleted_contacts == ["c1"]

    @pytest.mark.asyncio
    async def test_owner_lookup_failure_deletes_nothing(self, registry, platform, member_factory):
        """Test nothing is deleted when the owner cannot be determined."""
        platform.owner_contact_id = None

        registry.start(SITE, JobType.BULK_DELETE, member_factory(3))
        state = await registry.wait(SITE, JobType.BULK_DELETE)

        assert platform.bulk_calls == []
        assert platform.deleted_contacts == []
        assert state.status == JobStatus.COMPLETED
        assert "site owner" in state.message

    @pytest.mark.asyncio
    async def test_batches_of_default_size(self, registry, platform, member_factory):
        """Test members are deleted in order in batches of 50."""
        registry.start(SITE, JobType.BULK_DELETE, member_factory(101))
        state = await registry.wait(SITE, JobType.BULK_DELETE)

        assert [len(call) for call in platform.bulk_calls] == [50, 50, 1]
        assert len(platform.deleted_contacts) == 101
        assert state.processed == 101
        assert state.progress == 100
        assert [log.batch for log in _logs(state, BatchOperation.MEMBER_DELETION)] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_progress_advances_per_batch(self, registry, platform, member_factory):
        """Test progress is batches done over total batches and never decreases."""
        seen = []
        platform.on_bulk_delete = lambda ids: seen.append(registry.get(SITE, JobType.BULK_DELETE).progress)

        registry.start(SITE, JobType.BULK_DELETE, member_factory(4), {"batch_size": 1})
        state = await registry.wait(SITE, JobType.BULK_DELETE)

        assert seen == [0, 25, 50, 75]
        assert state.progress == 100

    @pytest.mark.asyncio
    async def test_failed_batch_is_logged_and_skipped(self, registry, platform, member_factory):
        """Test a failing bulk call logs an error batch and later batches still run."""
        platform.failing_batches = {1}

        registry.start(SITE, JobType.BULK_DELETE, member_factory(3), {"batch_size": 1})
        state = await registry.wait(SITE, JobType.BULK_DELETE)

        first = state.logs[0]
        assert first.batch == 1
        assert first.type == BatchOperation.MEMBER_DELETION
        assert first.status == BatchStatus.ERROR
        assert first.details == "Batch failed."
        assert first.raw_error == "Failed to delete members."
        assert not any(log.type == BatchOperation.CONTACT_DELETION and log.batch == 1 for log in state.logs)
        assert platform.deleted_contacts == ["c2", "c3"]
        assert state.progress == 100
        assert state.status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_contact_failure_does_not_abort_batch(self, registry, platform, member_factory):
        """Test a failed contact deletion is recorded and the rest continue."""
        platform.contact_failures = {"c2"}

        registry.start(SITE, JobType.BULK_DELETE, member_factory(3))
        state = await registry.wait(SITE, JobType.BULK_DELETE)

        contact_log = _logs(state, BatchOperation.CONTACT_DELETION)[0]
        assert platform.deleted_contacts == ["c1", "c2", "c3"]
        assert contact_log.status == BatchStatus.MIXED
        assert contact_log.details == "2 successful, 1 failed."
        failed = [r for r in contact_log.contact_results if r.status == ResultStatus.ERROR]
        assert [r.email for r in failed] == ["user2@example.com"]
        assert "Failed to delete contact c2" in failed[0].error

    @pytest.mark.asyncio
    async def test_member_without_contact(self, registry, platform):
        """Test a deleted member with no contact gets an error outcome."""
        members = [Member(id="m1", contact_id=None, login_email="ghost@example.com")]

        registry.start(SITE, JobType.BULK_DELETE, members)
        state = await registry.wait(SITE, JobType.BULK_DELETE)

        contact_log = _logs(state, BatchOperation.CONTACT_DELETION)[0]
        assert contact_log.status == BatchStatus.ERROR
        assert contact_log.contact_results[0].error == "Member has no associated contact."
        assert platform.deleted_contacts == []

    @pytest.mark.asyncio
    async def test_no_settle_when_nothing_deleted(self, registry, platform, member_factory, fake_sleep):
        """Test the settle delay and contact stage are skipped when no member was deleted."""
        platform.undeletable = {"m1", "m2"}

        registry.start(SITE, JobType.BULK_DELETE, member_factory(2), {"settle_seconds": 5})
        state = await registry.wait(SITE, JobType.BULK_DELETE)

        assert fake_sleep.calls == []
        assert [log.type for log in state.logs] == [BatchOperation.MEMBER_DELETION]
        assert state.logs[0].status == BatchStatus.ERROR

    @pytest.mark.asyncio
    async def test_settle_and_contact_delays(self, registry, member_factory, fake_sleep):
        """Test the settle delay runs once per batch and the contact delay between contacts."""
        config = {"settle_seconds": 2, "contact_delay_seconds": 0.2}

        registry.start(SITE, JobType.BULK_DELETE, member_factory(3), config)
        await registry.wait(SITE, JobType.BULK_DELETE)

        assert fake_sleep.calls == [1.0, 1.0, 0.2, 0.2]

    @pytest.mark.asyncio
    async def test_cancel_during_settle(self, registry, platform, member_factory, fake_sleep):
        """Test cancelling during the first settle delay stops all later batches."""
        fake_sleep.hook = lambda seconds, call: registry.cancel(SITE, JobType.BULK_DELETE) if call == 1 else None

        registry.start(
            SITE, JobType.BULK_DELETE, member_factory(3), {"batch_size": 1, "settle_seconds": 5},
        )
        state = await registry.wait(SITE, JobType.BULK_DELETE)

        assert platform.bulk_calls == [["m1"]]
        assert platform.deleted_contacts == []
        assert len(fake_sleep.calls) == 1
        assert all(log.batch == 1 for log in state.logs)
        assert len(state.logs) == 1
        assert state.status == JobStatus.CANCELLED
        assert state.message == "Job cancelled by user."
        assert state.countdown == 0

    @pytest.mark.asyncio
    async def test_pause_not_supported(self, registry, platform, member_factory):
        """Test pause is a no-op for bulk delete jobs."""
        results = []
        platform.on_bulk_delete = lambda ids: results.append(registry.pause(SITE, JobType.BULK_DELETE))

        registry.start(SITE, JobType.BULK_DELETE, member_factory(2), {"batch_size": 1})
        state = await registry.wait(SITE, JobType.BULK_DELETE)

        assert results == [False, False]
        assert state.status == JobStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_empty_selection_completes_immediately(self, registry, platform):
        """Test an empty selection completes without calling the platform."""
        platform.owner_contact_id = None

        registry.start(SITE, JobType.BULK_DELETE, [])
        state = await registry.wait(SITE, JobType.BULK_DELETE)

        assert platform.bulk_calls == []
        assert state.status == JobStatus.COMPLETED
        assert state.progress == 0
        assert state.logs == []

    @pytest.mark.asyncio
    async def test_accepts_member_dicts(self, registry, platform):
        """Test raw member payloads using API field names are accepted."""
        members = [{"id": "m1", "contactId": "c1", "loginEmail": "a@x.com"}]

        registry.start(SITE, JobType.BULK_DELETE, members)
        await registry.wait(SITE, JobType.BULK_DELETE)

        assert platform.deleted_contacts == ["c1"]
