"""
Zimbra admin SOAP client and its envelope/response helpers.
"""

from queue_sentinel.services.zimbra.admin_client import (
    AdminErrorKind,
    ZimbraAdminClient,
    ZimbraAdminError,
)

__all__ = ["AdminErrorKind", "ZimbraAdminClient", "ZimbraAdminError"]
