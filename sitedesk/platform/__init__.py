"""
SiteDesk Platform Module

Client for the hosted member/contact platform.
"""

from sitedesk.platform.client import (
    BulkDeleteOutcome,
    CampaignActivity,
    CampaignRecipient,
    CampaignStats,
    ImportOutcome,
    Member,
    PlatformClient,
    PlatformError,
)

__all__ = [
    'PlatformClient',
    'PlatformError',
    'Member',
    'ImportOutcome',
    'BulkDeleteOutcome',
    'CampaignActivity',
    'CampaignStats',
    'CampaignRecipient',
]
