"""
Job Runners

Drive batched, paced work items through the platform client, consulting
the job's control flags at every item and batch boundary.
"""

import asyncio
import logging
import re
from typing import Any, Iterable, Optional, Protocol

from sitedesk.config import get_job_defaults
from sitedesk.jobs.batcher import Batcher
from sitedesk.jobs.control import Sleep
from sitedesk.jobs.models import (
    BatchLog,
    BatchOperation,
    BatchStatus,
    BulkDeleteConfig,
    ContactResult,
    ImportConfig,
    ItemResult,
    JobType,
    ResultStatus,
)
from sitedesk.jobs.pacer import Pacer
from sitedesk.jobs.registry import JobHandle, JobRegistry
from sitedesk.platform.client import BulkDeleteOutcome, ImportOutcome, Member, PlatformError

logger = logging.getLogger(__name__)

RECIPIENT_SEPARATORS = re.compile(r'[,\s]+')


class ImportClient(Protocol):
    async def import_user(self, site_id: str, email: str, subject: str) -> ImportOutcome: ...


class DeleteClient(Protocol):
    async def bulk_delete_members(self, site_id: str, member_ids: list[str]) -> BulkDeleteOutcome: ...

    async def delete_contact(self, site_id: str, contact_id: str) -> None: ...

    async def get_owner_contact_id(self, site_id: str) -> str: ...


def parse_recipients(raw: str | Iterable[str]) -> list[str]:
    """Split recipients on commas and whitespace, keeping entries containing '@'."""
    if isinstance(raw, str):
        candidates = RECIPIENT_SEPARATORS.split(raw)
    else:
        candidates = [part for entry in raw for part in RECIPIENT_SEPARATORS.split(entry)]
    return [email.strip() for email in candidates if '@' in email]


def exclude_owner(members: Iterable[Member], owner_contact_id: Optional[str]) -> list[Member]:
    """Drop the member whose contact is the site owner's."""
    return [m for m in members if owner_contact_id is None or m.contact_id != owner_contact_id]


def _merge_config(model, defaults, overrides: Any):
    if isinstance(overrides, model):
        return overrides
    values = defaults.model_dump()
    values.update({k: v for k, v in (overrides or {}).items() if v is not None})
    return model.model_validate(values)


class ImportRunner:
    """Imports recipients one at a time with an inter-item delay.

    Supports pause and resume: a pause during the delay re-applies the
    delay once resumed, and the pending item is never skipped.
    """

    job_type = JobType.IMPORT
    supports_pause = True

    def __init__(self, client: ImportClient, defaults: Optional[ImportConfig] = None, sleep: Sleep = asyncio.sleep):
        self.client = client
        self.defaults = defaults or ImportConfig()
        self.sleep = sleep

    def configure(self, overrides: Any = None) -> ImportConfig:
        return _merge_config(ImportConfig, self.defaults, overrides)

    def prepare(self, work_items: str | Iterable[str]) -> list[str]:
        return parse_recipients(work_items)

    async def _wait_turn(self, job: JobHandle, pacer: Pacer, index: int, config: ImportConfig) -> bool:
        """Block until item `index` may be dispatched. False means cancelled."""
        while not job.cancelled:
            if job.paused:
                await job.control.wait_while_paused(self.sleep, config.poll_interval)
                continue
            waited = await pacer.wait_before(index, config.delay_seconds, on_tick=job.set_countdown)
            if waited and not job.paused:
                return not job.cancelled
        return False

    async def run(self, job: JobHandle, recipients: list[str], config: ImportConfig) -> None:
        total = len(recipients)
        pacer = Pacer(job.control, sleep=self.sleep)

        for index, email in enumerate(recipients):
            if not await self._wait_turn(job, pacer, index, config):
                break

            job.update(message=f"Processing user {index + 1} of {total}")
            position = job.add_result(ItemResult(item=email, message="Importing..."))
            try:
                outcome = await self.client.import_user(job.key, email, config.custom_subject)
            except PlatformError as e:
                logger.warning("Import of %s into %s failed: %s", email, job.key, e)
                job.update_result(position, status=ResultStatus.ERROR, message=str(e), detail={'error': str(e)})
            else:
                job.update_result(position, status=ResultStatus.SUCCESS, message=outcome.message, detail=outcome.detail)

            job.update(processed=index + 1)
            job.set_progress(index + 1, total)

        if job.cancelled:
            job.finish(message="Import job terminated by user.")
        else:
            job.finish(message=f"Import finished: {total} user(s) processed.")


class BulkDeleteRunner:
    """Deletes members in batches, then the contacts of deleted members.

    Each batch is one bulk member deletion, a settle delay, then one
    contact deletion per successfully deleted member. The site owner's
    contact is filtered out before batching. Cancellation only, no pause.
    """

    job_type = JobType.BULK_DELETE
    supports_pause = False

    def __init__(self, client: DeleteClient, defaults: Optional[BulkDeleteConfig] = None, sleep: Sleep = asyncio.sleep):
        self.client = client
        self.defaults = defaults or BulkDeleteConfig()
        self.sleep = sleep

    def configure(self, overrides: Any = None) -> BulkDeleteConfig:
        return _merge_config(BulkDeleteConfig, self.defaults, overrides)

    def prepare(self, work_items: Iterable[Member | dict]) -> list[Member]:
        return [m if isinstance(m, Member) else Member.model_validate(m) for m in work_items]

    async def run(self, job: JobHandle, members: list[Member], config: BulkDeleteConfig) -> None:
        owner_contact_id = None
        if members:
            try:
                owner_contact_id = await self.client.get_owner_contact_id(job.key)
            except PlatformError as e:
                logger.error("Owner lookup for %s failed, nothing deleted: %s", job.key, e)
                job.finish(message=f"Could not determine the site owner, nothing was deleted: {e}")
                return

        deletable = exclude_owner(members, owner_contact_id)
        batches = Batcher(deletable, config.batch_size)
        total_batches = len(batches)
        job.update(
            total=len(deletable),
            message=f"Deleting {len(deletable)} members in {total_batches} batch(es)...",
        )

        pacer = Pacer(job.control, sleep=self.sleep, honor_pause=False)
        deleted = 0
        for number, batch in enumerate(batches, start=1):
            if job.cancelled:
                break
            deleted += await self._delete_batch(job, pacer, number, total_batches, batch, config)
            job.update(processed=min(number * config.batch_size, len(deletable)))
            job.set_progress(number, total_batches)

        if job.cancelled:
            job.finish(message="Job cancelled by user.")
        else:
            job.finish(message=f"Deletion complete: {deleted} out of {len(deletable)} selected members were processed.")

    async def _delete_batch(
        self,
        job: JobHandle,
        pacer: Pacer,
        number: int,
        total_batches: int,
        batch: list[Member],
        config: BulkDeleteConfig,
    ) -> int:
        """Run both stages for one batch. Returns the number of members deleted."""
        prefix = f"Batch {number}/{total_batches}"
        member_ids = [m.id for m in batch]
        job.update(message=f"{prefix}: Deleting members...")

        try:
            outcome = await self.client.bulk_delete_members(job.key, member_ids)
        except PlatformError as e:
            logger.warning("%s for site %s failed: %s", prefix, job.key, e)
            job.add_log(BatchLog(
                batch=number,
                type=BatchOperation.MEMBER_DELETION,
                status=BatchStatus.ERROR,
                details="Batch failed.",
                raw_error=str(e),
            ))
            return 0

        succeeded = set(outcome.succeeded_ids)
        deleted = [m for m in batch if m.id in succeeded]
        job.add_log(BatchLog(
            batch=number,
            type=BatchOperation.MEMBER_DELETION,
            status=BatchStatus.aggregate(len(deleted), len(batch) - len(deleted)),
            details=f"{len(deleted)} of {len(member_ids)} members deleted.",
        ))
        if not deleted:
            return 0

        job.update(message=f"{prefix}: Waiting for the platform to sync...")
        await pacer.hold(config.settle_seconds, on_tick=job.set_countdown)

        contact_results = []
        for index, member in enumerate(deleted):
            if job.cancelled:
                break
            if not await pacer.wait_before(index, config.contact_delay_seconds):
                break
            job.update(message=f"{prefix}: Deleting contact for {member.label}")
            contact_results.append(await self._delete_contact(job, member))

        if contact_results or not job.cancelled:
            failed = sum(1 for r in contact_results if r.status == ResultStatus.ERROR)
            succeeded_contacts = len(contact_results) - failed
            job.add_log(BatchLog(
                batch=number,
                type=BatchOperation.CONTACT_DELETION,
                status=BatchStatus.aggregate(succeeded_contacts, failed),
                details=f"{succeeded_contacts} successful, {failed} failed.",
                contact_results=contact_results,
            ))
        return len(deleted)

    async def _delete_contact(self, job: JobHandle, member: Member) -> ContactResult:
        result = ContactResult(email=member.login_email, contact_id=member.contact_id, status=ResultStatus.SUCCESS)
        if not member.contact_id:
            result.status = ResultStatus.ERROR
            result.error = "Member has no associated contact."
            return result
        try:
            await self.client.delete_contact(job.key, member.contact_id)
        except PlatformError as e:
            logger.warning("Contact deletion for %s on %s failed: %s", member.label, job.key, e)
            result.status = ResultStatus.ERROR
            result.error = str(e)
        return result


def create_registry(client, config: Optional[dict] = None, sleep: Sleep = asyncio.sleep, **kwargs) -> JobRegistry:
    """Build a registry with the import and bulk delete runners.

    Job defaults come from the `jobs` section of the application config.
    """
    config = config or {}
    import_defaults = ImportConfig(**get_job_defaults(config, 'import'))
    delete_defaults = BulkDeleteConfig(**get_job_defaults(config, 'bulk_delete'))
    return JobRegistry(
        [
            ImportRunner(client, import_defaults, sleep=sleep),
            BulkDeleteRunner(client, delete_defaults, sleep=sleep),
        ],
        **kwargs,
    )
