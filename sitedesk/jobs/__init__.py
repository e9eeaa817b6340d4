"""
SiteDesk Jobs Module

Background job orchestration for bulk import and bulk deletion.
"""

from sitedesk.jobs.batcher import Batcher, batched
from sitedesk.jobs.control import JobControl
from sitedesk.jobs.models import (
    BatchLog,
    BatchOperation,
    BatchStatus,
    BulkDeleteConfig,
    ContactResult,
    ElapsedTimer,
    ImportConfig,
    ItemResult,
    JobState,
    JobStatus,
    JobType,
    ResultStatus,
)
from sitedesk.jobs.pacer import Pacer
from sitedesk.jobs.registry import JobConflictError, JobHandle, JobRegistry
from sitedesk.jobs.runner import (
    BulkDeleteRunner,
    ImportRunner,
    create_registry,
    exclude_owner,
    parse_recipients,
)

__all__ = [
    # Building blocks
    'Batcher',
    'batched',
    'JobControl',
    'Pacer',
    'ElapsedTimer',
    # State
    'JobState',
    'JobStatus',
    'JobType',
    'ItemResult',
    'ResultStatus',
    'BatchLog',
    'BatchOperation',
    'BatchStatus',
    'ContactResult',
    'ImportConfig',
    'BulkDeleteConfig',
    # Orchestration
    'JobRegistry',
    'JobHandle',
    'JobConflictError',
    'ImportRunner',
    'BulkDeleteRunner',
    'create_registry',
    'parse_recipients',
    'exclude_owner',
]
