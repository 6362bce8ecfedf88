"""Browsing services.

Session state (cursor, accumulation, resubmission workflow) lives here.
Routes call into sessions; sessions call the RemoteGateway.
"""

from opsconsole.services.sessions import (
    BrowsingSession,
    DocumentBrowsingSession,
    MessageBrowsingSession,
    SessionRegistry,
)

__all__ = [
    "BrowsingSession",
    "DocumentBrowsingSession",
    "MessageBrowsingSession",
    "SessionRegistry",
]
