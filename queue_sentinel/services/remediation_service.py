"""
Remediation of a flagged sender: reset the password, lock the account and
leave an audit note, then send the operator one consolidated report.

The three account steps are independent and best effort. A failure in one
is folded into the report and the others still run. Only the account id
lookup can abort: a missing account ends the remediation with a notice, any
other lookup failure propagates to the queue monitor job.
"""

from collections.abc import Callable
from datetime import UTC, datetime

from queue_sentinel.infrastructure.observability.logging import get_logger
from queue_sentinel.models.domain.classification_domain import (
    RemediationResult,
    StepOutcome,
)
from queue_sentinel.services.zimbra.admin_client import (
    LOCKED_STATUS,
    AdminErrorKind,
    ZimbraAdminError,
)
from queue_sentinel.services.notifier import escape_markdown

logger = get_logger(__name__)

NOTE_TEMPLATE = "Account locked on {timestamp} (spam)"


def compose_report(
    address: str,
    count: int,
    origin_ip: str,
    country: str,
    password_reset: StepOutcome,
    lock: StepOutcome,
    note: StepOutcome,
    home_country: str = "BR",
) -> str:
    """Build the operator message (Telegram Markdown) for one remediation."""
    origin = origin_ip
    if country.upper() != home_country.upper():
        origin += f" (foreign: {country})"

    lines = [
        f"*Address:* {escape_markdown(address)}",
        f"*Count:* {count}",
        f"*Origin IP:* {escape_markdown(origin)}",
    ]
    if password_reset.secret:
        lines.append(f"*New password:* {escape_markdown(password_reset.secret)}")
    elif not password_reset.ok:
        lines.append(f"*Password reset:* {escape_markdown(password_reset.detail)}")
    lines.append(f"*Locked:* {escape_markdown(lock.detail)}")
    lines.append(f"*Note:* {escape_markdown(note.detail)}")

    return ",\n".join(lines)


class RemediationService:
    """Runs the remediation steps for one sender at a time."""

    def __init__(
        self,
        admin_client,
        alerts,
        home_country: str = "BR",
        clock: Callable[[], datetime] | None = None,
    ):
        self.admin_client = admin_client
        self.alerts = alerts
        self.home_country = home_country
        self._clock = clock or (lambda: datetime.now(UTC))

    def _note_text(self) -> str:
        timestamp = self._clock().strftime("%Y-%m-%d %H:%M %Z").strip()
        return NOTE_TEMPLATE.format(timestamp=timestamp)

    async def _reset_password(self, auth_token: str, account_id: str) -> StepOutcome:
        try:
            return await self.admin_client.reset_password(auth_token, account_id)
        except Exception as e:
            logger.error("Password reset failed", account_id=account_id, error=str(e))
            return StepOutcome.failed(f"Password reset failed: {e}")

    async def _lock(self, auth_token: str, account_id: str) -> StepOutcome:
        try:
            status = await self.admin_client.get_account_status(auth_token, account_id)
            if status == LOCKED_STATUS:
                logger.info("Account already locked", account_id=account_id)
                return StepOutcome.skipped("Account was already locked")
            return await self.admin_client.lock_account(auth_token, account_id)
        except Exception as e:
            logger.error("Account lock failed", account_id=account_id, error=str(e))
            return StepOutcome.failed(f"Failed to lock the account: {e}")

    async def _add_note(self, auth_token: str, account_id: str) -> StepOutcome:
        try:
            return await self.admin_client.append_account_note(auth_token, account_id, self._note_text())
        except Exception as e:
            logger.error("Account note failed", account_id=account_id, error=str(e))
            return StepOutcome.failed(f"Failed to add the note: {e}")

    async def remediate(
        self,
        auth_token: str,
        address: str,
        origin_ip: str,
        country: str,
        count: int,
    ) -> RemediationResult:
        """
        Remediate ``address`` and notify operators once.

        Raises:
            ZimbraAdminError: account lookup failed for a reason other than a missing account
        """
        try:
            account_id = await self.admin_client.resolve_account_id(auth_token, address)
        except ZimbraAdminError as e:
            if e.kind is not AdminErrorKind.NOT_FOUND:
                raise

            message = f"No such account for email: {address}"
            logger.info("No such account, remediation skipped", sender=address)
            await self.alerts.notify(message)
            return RemediationResult(sender=address, account_found=False, message=message)

        logger.warning(
            "Remediating account",
            sender=address,
            account_id=account_id,
            origin_ip=origin_ip,
            country=country,
            count=count,
        )

        password_reset = await self._reset_password(auth_token, account_id)
        lock = await self._lock(auth_token, account_id)
        note = await self._add_note(auth_token, account_id)

        message = compose_report(
            address,
            count,
            origin_ip,
            country,
            password_reset,
            lock,
            note,
            home_country=self.home_country,
        )
        await self.alerts.notify(message, markdown=True)

        logger.info(
            "Remediation finished",
            sender=address,
            account_id=account_id,
            password_reset=password_reset.status.value,
            lock=lock.status.value,
            note=note.status.value,
        )

        return RemediationResult(
            sender=address,
            account_found=True,
            message=message,
            account_id=account_id,
            password_reset=password_reset,
            lock=lock,
            note=note,
        )
