"""
Test fixtures for SiteDesk tests.
"""

import asyncio
import inspect
import os

import pytest
from click.testing import CliRunner

from sitedesk.jobs import BulkDeleteRunner, ImportRunner, JobRegistry
from sitedesk.jobs.models import BulkDeleteConfig, ImportConfig
from sitedesk.platform import (
    BulkDeleteOutcome,
    CampaignRecipient,
    ImportOutcome,
    Member,
    PlatformError,
)
from sitedesk.sites import ManagedSite, SiteStore


class FakeClock:
    """Monotonic clock advanced by hand (or by FakeSleep)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested sleeps, advances the clock and yields to the loop.

    `hook(seconds, call_number)` runs before each sleep, which lets tests
    pause, resume or cancel a job at a precise suspension point.
    """

    def __init__(self, clock: FakeClock = None):
        self.clock = clock
        self.calls: list[float] = []
        self.hook = None

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.hook:
            self.hook(seconds, len(self.calls))
        if self.clock:
            self.clock.advance(seconds)
        await asyncio.sleep(0)


async def _call_hook(hook, *args):
    if hook is None:
        return
    result = hook(*args)
    if inspect.isawaitable(result):
        await result


class FakePlatform:
    """In-memory stand-in for PlatformClient."""

    def __init__(self):
        self.owner_contact_id = "owner-contact"
        self.members: list[Member] = []
        self.imported: list[str] = []
        self.import_failures: dict[str, str] = {}
        self.bulk_calls: list[list[str]] = []
        self.failing_batches: set[int] = set()
        self.undeletable: set[str] = set()
        self.deleted_contacts: list[str] = []
        self.contact_failures: set[str] = set()
        self.on_import = None
        self.on_bulk_delete = None
        self.reported_total = None
        self.campaign_stats = None
        self.campaign_recipients: list[CampaignRecipient] = []
        self.campaign_requests: list[tuple] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None

    async def import_user(self, site_id, email, subject):
        self.imported.append(email)
        await _call_hook(self.on_import, email)
        if email in self.import_failures:
            raise PlatformError(self.import_failures[email], status_code=400)
        return ImportOutcome(message=f"Imported {email}", detail={"status": "SUCCESS", "email": email})

    async def bulk_delete_members(self, site_id, member_ids):
        self.bulk_calls.append(list(member_ids))
        await _call_hook(self.on_bulk_delete, list(member_ids))
        if len(self.bulk_calls) in self.failing_batches:
            raise PlatformError("Failed to delete members.", status_code=500)
        succeeded = [m for m in member_ids if m not in self.undeletable]
        failed = [m for m in member_ids if m in self.undeletable]
        total = len(succeeded) if self.reported_total is None else self.reported_total
        return BulkDeleteOutcome(succeeded_ids=succeeded, failed_ids=failed, total_successes=total)

    async def delete_contact(self, site_id, contact_id):
        self.deleted_contacts.append(contact_id)
        if contact_id in self.contact_failures:
            raise PlatformError(f"Failed to delete contact {contact_id}: not found", status_code=404)

    async def get_owner_contact_id(self, site_id):
        if self.owner_contact_id is None:
            raise PlatformError("Site owner could not be determined from contributors list.")
        return self.owner_contact_id

    async def list_members(self, site_id):
        return list(self.members)

    async def search_members(self, site_id, query):
        return [m for m in self.members if query in (m.login_email or "")]

    async def get_campaign_stats(self, site_id, campaign_id):
        self.campaign_requests.append(("stats", site_id, campaign_id))
        return self.campaign_stats

    async def get_campaign_recipients(self, site_id, campaign_id, activity):
        self.campaign_requests.append(("recipients", site_id, campaign_id, activity))
        return list(self.campaign_recipients)


def make_members(count: int, prefix: str = "m") -> list[Member]:
    """Members m1..mN with contacts c1..cN."""
    return [
        Member(id=f"{prefix}{i}", contact_id=f"c{i}", login_email=f"user{i}@example.com")
        for i in range(1, count + 1)
    ]


@pytest.fixture
def runner():
    """Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep(clock):
    return FakeSleep(clock)


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def registry(platform, fake_sleep, clock):
    """Registry with zero-delay defaults driven by the fake sleep and clock."""
    return JobRegistry(
        [
            ImportRunner(platform, ImportConfig(delay_seconds=0), sleep=fake_sleep),
            BulkDeleteRunner(
                platform,
                BulkDeleteConfig(settle_seconds=0, contact_delay_seconds=0),
                sleep=fake_sleep,
            ),
        ],
        clock=clock,
    )


@pytest.fixture
def site_store(tmp_path):
    """Site store in a temporary directory with one site."""
    store = SiteStore(tmp_path / "sites.yaml")
    store.save(ManagedSite(site_name="Main Site", site_id="site-1", api_key="key-123456"))
    return store


@pytest.fixture
def isolated_filesystem(tmp_path):
    """Run test in an isolated filesystem."""
    original_dir = os.getcwd()
    os.chdir(tmp_path)

    yield tmp_path

    os.chdir(original_dir)


@pytest.fixture
def mock_config(monkeypatch, tmp_path):
    """Mock the config loading to use a temp site store and no delays."""
    sites_path = str(tmp_path / "sites.yaml")

    def mock_load_config():
        return {
            "sites": {"path": sites_path},
            "platform": {"api_url": "https://api.test", "functions_url": "https://console.test/_functions"},
            "jobs": {
                "import": {"delay_seconds": 0},
                "bulk_delete": {"settle_seconds": 0, "contact_delay_seconds": 0},
            },
            "logging": {"level": "WARNING"},
        }

    monkeypatch.setattr("sitedesk.cli.load_config", mock_load_config)
    monkeypatch.setattr("sitedesk.config.load_config", mock_load_config)

    return sites_path


@pytest.fixture
def member_factory():
    """Factory for lists of members with distinct contacts."""
    return make_members
