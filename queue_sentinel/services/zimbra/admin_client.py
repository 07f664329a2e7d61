"""
Zimbra Admin SOAP client.
Authenticates, scans the deferred queue and reads/mutates account attributes.
Every failure is tagged with an AdminErrorKind here, once, so callers branch
on the kind instead of sniffing response text.
"""

import secrets
import string
from enum import Enum

import httpx

from queue_sentinel.config import Settings, settings
from queue_sentinel.infrastructure.observability.logging import get_logger
from queue_sentinel.models.domain.classification_domain import StepOutcome
from queue_sentinel.models.domain.queue_domain import QueueSnapshot
from queue_sentinel.services.http_errors import transport_error_details
from queue_sentinel.services.zimbra import soap

logger = get_logger(__name__)

SOAP_HEADERS = {
    "SOAPAction": '"#POST"',
    "Content-Type": "application/xml",
}

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 12
PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*()_+~`|}{[]:;?><,./-="

ACCOUNT_STATUS_ATTR = "zimbraAccountStatus"
ACCOUNT_NOTES_ATTR = "zimbraNotes"
LOCKED_STATUS = "locked"


class AdminErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    ALREADY_IN_PROGRESS = "already_in_progress"
    AUTH = "auth"
    TRANSIENT = "transient"
    FATAL = "fatal"


FAULT_CODE_KINDS = {
    "account.NO_SUCH_ACCOUNT": AdminErrorKind.NOT_FOUND,
    "service.ALREADY_IN_PROGRESS": AdminErrorKind.ALREADY_IN_PROGRESS,
    "account.AUTH_FAILED": AdminErrorKind.AUTH,
    "service.AUTH_EXPIRED": AdminErrorKind.AUTH,
    "service.AUTH_REQUIRED": AdminErrorKind.AUTH,
    "service.PERM_DENIED": AdminErrorKind.AUTH,
}


class ZimbraAdminError(Exception):
    """Custom exception for Zimbra admin API errors."""

    def __init__(
        self,
        message: str,
        kind: AdminErrorKind = AdminErrorKind.FATAL,
        operation: str | None = None,
        fault_code: str | None = None,
        status_code: int | None = None,
        errno: int | None = None,
        code: str | None = None,
        syscall: str | None = None,
        address: str | None = None,
        port: int | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.operation = operation
        self.fault_code = fault_code
        self.status_code = status_code
        self.errno = errno
        self.code = code or fault_code
        self.syscall = syscall
        self.address = address
        self.port = port


def classify_fault(fault: soap.SoapFault) -> AdminErrorKind:
    """Map a SOAP fault to an error kind, falling back to the reason text for old servers."""
    if fault.code in FAULT_CODE_KINDS:
        return FAULT_CODE_KINDS[fault.code]

    reason = fault.reason.lower()
    if "no such account" in reason:
        return AdminErrorKind.NOT_FOUND
    if "already_in_progress" in reason or "already in progress" in reason:
        return AdminErrorKind.ALREADY_IN_PROGRESS
    return AdminErrorKind.FATAL


def generate_password() -> str:
    """Random password of 8 to 12 characters."""
    length = PASSWORD_MIN_LENGTH + secrets.randbelow(PASSWORD_MAX_LENGTH - PASSWORD_MIN_LENGTH + 1)
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


class ZimbraAdminClient:
    """
    Client for the Zimbra admin SOAP endpoint.

    Holds no session state: the auth token is returned by authenticate() and
    passed back into every call, so one cycle owns one token.
    """

    def __init__(
        self,
        config: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config or settings
        self.url = self.config.ZIMBRA_ADMIN_URL
        self._validate_config()
        self._client = client or self._create_client()

    def _validate_config(self) -> None:
        """Validate Zimbra admin configuration."""
        if not self.url:
            raise ZimbraAdminError("ZIMBRA_ADMIN_URL not configured", operation="configure")
        if not self.config.ZIMBRA_ADMIN_USER or not self.config.ZIMBRA_ADMIN_PASSWORD:
            raise ZimbraAdminError("Zimbra admin credentials not configured", operation="configure")

        if not self.config.ZIMBRA_VERIFY_TLS:
            logger.warning("Zimbra admin TLS verification disabled", url=self.url)

    def _create_client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(self.config.ZIMBRA_REQUEST_TIMEOUT)
        return httpx.AsyncClient(timeout=timeout, verify=self.config.ZIMBRA_VERIFY_TLS)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    def _endpoint_details(self) -> dict:
        url = httpx.URL(self.url)
        return {
            "address": url.host or None,
            "port": url.port or (443 if url.scheme == "https" else 80),
        }

    async def _call(self, request, operation: str, auth_token: str | None = None):
        """
        POST one SOAP request and return the response Body.

        Raises:
            ZimbraAdminError: tagged with the failure kind
        """
        payload = soap.build_envelope(request, auth_token)

        try:
            response = await self._client.post(self.url, content=payload, headers=SOAP_HEADERS)
        except httpx.RequestError as e:
            details = transport_error_details(e)
            logger.error(
                "Zimbra admin request failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
                **details,
            )
            raise ZimbraAdminError(
                str(e) or type(e).__name__,
                kind=AdminErrorKind.TRANSIENT,
                operation=operation,
                **details,
            ) from e

        try:
            body = soap.parse_body(response.content)
        except soap.SoapParseError as e:
            logger.error(
                "Unparseable Zimbra admin response",
                operation=operation,
                status_code=response.status_code,
                response_text=response.text[:200] if response.text else "",
            )
            raise ZimbraAdminError(
                f"{operation} failed: {e}",
                kind=AdminErrorKind.FATAL,
                operation=operation,
                status_code=response.status_code,
                code=f"HTTP_{response.status_code}",
                **self._endpoint_details(),
            ) from e

        fault = soap.extract_fault(body)
        if fault is not None:
            kind = classify_fault(fault)
            logger.debug(
                "Zimbra admin fault",
                operation=operation,
                fault_code=fault.code,
                reason=fault.reason,
                kind=kind.value,
            )
            raise ZimbraAdminError(
                fault.reason,
                kind=kind,
                operation=operation,
                fault_code=fault.code,
                status_code=response.status_code,
                **self._endpoint_details(),
            )

        if not response.is_success:
            raise ZimbraAdminError(
                f"{operation} failed (HTTP {response.status_code})",
                kind=AdminErrorKind.FATAL,
                operation=operation,
                status_code=response.status_code,
                code=f"HTTP_{response.status_code}",
                **self._endpoint_details(),
            )

        return body

    def _parse(self, parser, body, operation: str, *args):
        try:
            return parser(body, *args)
        except soap.SoapParseError as e:
            raise ZimbraAdminError(
                f"{operation} failed: {e}",
                kind=AdminErrorKind.FATAL,
                operation=operation,
                code="UNEXPECTED_RESPONSE",
                **self._endpoint_details(),
            ) from e

    async def authenticate(self) -> str:
        """
        Authenticate the admin account.

        Returns:
            str: admin auth token

        Raises:
            ZimbraAdminError: kind AUTH on rejected credentials
        """
        request = soap.auth_request(self.config.ZIMBRA_ADMIN_USER, self.config.ZIMBRA_ADMIN_PASSWORD)
        body = await self._call(request, "authenticate")
        token = self._parse(soap.parse_auth_token, body, "authenticate")
        logger.debug("Zimbra admin authenticated", user=self.config.ZIMBRA_ADMIN_USER)
        return token

    async def fetch_queue_snapshot(self, auth_token: str, server_name: str) -> QueueSnapshot | None:
        """
        Scan the deferred queue of ``server_name``.

        Returns:
            QueueSnapshot, or None when the response carries no queue

        Raises:
            ZimbraAdminError: kind ALREADY_IN_PROGRESS while the server is still scanning
        """
        request = soap.get_mail_queue_request(
            server_name,
            limit=self.config.QUEUE_SCAN_LIMIT,
            wait=self.config.QUEUE_SCAN_WAIT,
        )
        body = await self._call(request, "get_mail_queue", auth_token)
        snapshot = self._parse(soap.parse_mail_queue, body, "get_mail_queue", server_name)

        if snapshot is not None:
            logger.info(
                "Mail queue fetched",
                server=server_name,
                total=snapshot.total,
                summaries=sorted(snapshot.summaries),
                connections=len(snapshot.connections),
            )
        return snapshot

    async def resolve_account_id(self, auth_token: str, address: str) -> str:
        """
        Look up the zimbraId of ``address``.

        Raises:
            ZimbraAdminError: kind NOT_FOUND when the account does not exist
        """
        request = soap.get_account_info_request(address)
        body = await self._call(request, "get_account_info", auth_token)
        return self._parse(soap.parse_account_id, body, "get_account_info")

    async def get_account_attributes(
        self, auth_token: str, account_id: str, attrs: str | None = None
    ) -> dict[str, str]:
        request = soap.get_account_request(account_id, attrs)
        body = await self._call(request, "get_account", auth_token)
        return self._parse(soap.parse_account_attributes, body, "get_account")

    async def get_account_status(self, auth_token: str, account_id: str) -> str | None:
        """Current zimbraAccountStatus (active, locked, closed, ...) or None if not returned."""
        attributes = await self.get_account_attributes(auth_token, account_id, ACCOUNT_STATUS_ATTR)
        return attributes.get(ACCOUNT_STATUS_ATTR) or None

    async def _modify_account(self, auth_token: str, account_id: str, attributes: dict[str, str]) -> bool:
        request = soap.modify_account_request(account_id, attributes)
        body = await self._call(request, "modify_account", auth_token)
        return soap.has_response(body, "ModifyAccountResponse")

    async def reset_password(self, auth_token: str, account_id: str | None) -> StepOutcome:
        """Set a fresh random password. Skipped when no account id is known."""
        if not account_id:
            logger.info("Password reset skipped, no account id")
            return StepOutcome.skipped("Password reset skipped: account id unavailable")

        new_password = generate_password()
        request = soap.set_password_request(account_id, new_password)
        await self._call(request, "set_password", auth_token)

        logger.info("Account password reset", account_id=account_id)
        return StepOutcome.succeeded("Password reset", secret=new_password)

    async def lock_account(self, auth_token: str, account_id: str | None) -> StepOutcome:
        """Set zimbraAccountStatus=locked."""
        if not account_id:
            logger.info("Account lock skipped, no account id")
            return StepOutcome.skipped("Lock skipped: account id unavailable")

        modified = await self._modify_account(auth_token, account_id, {ACCOUNT_STATUS_ATTR: LOCKED_STATUS})
        if not modified:
            return StepOutcome.failed("Failed to change the account status")

        logger.info("Account locked", account_id=account_id)
        return StepOutcome.succeeded("Account status changed to locked")

    async def append_account_note(self, auth_token: str, account_id: str | None, note: str) -> StepOutcome:
        """Append ``note`` to zimbraNotes, keeping whatever was there."""
        if not account_id:
            logger.info("Account note skipped, no account id")
            return StepOutcome.skipped("Note skipped: account id unavailable")

        attributes = await self.get_account_attributes(auth_token, account_id)
        existing = attributes.get(ACCOUNT_NOTES_ATTR, "")
        updated = f"{existing}\n{note}".strip()

        modified = await self._modify_account(auth_token, account_id, {ACCOUNT_NOTES_ATTR: updated})
        if not modified:
            return StepOutcome.failed("Failed to add the account note")

        logger.info("Account note appended", account_id=account_id)
        return StepOutcome.succeeded("Note added")
