from datetime import UTC, datetime

import pytest

from queue_sentinel.models.domain.classification_domain import StepOutcome, StepStatus
from queue_sentinel.services.remediation_service import RemediationService, compose_report
from queue_sentinel.services.zimbra.admin_client import AdminErrorKind, ZimbraAdminError

SENDER = "a@inst.edu"


def _service(fake_admin, alert_service) -> RemediationService:
    return RemediationService(
        fake_admin,
        alert_service,
        clock=lambda: datetime(2026, 10, 19, 14, 3, tzinfo=UTC),
    )


@pytest.mark.asyncio
async def test_full_remediation_sends_one_consolidated_report(fake_admin, alert_service, fake_notifier):
    fake_admin.accounts[SENDER] = "acct-1"
    service = _service(fake_admin, alert_service)

    result = await service.remediate("token-1", SENDER, "203.0.113.9", "US", 50)

    assert result.account_found is True
    assert result.account_id == "acct-1"
    assert result.password_reset.ok and result.lock.ok and result.note.ok
    assert fake_admin.called("lock_account") == [("lock_account", "acct-1")]
    assert fake_admin.called("append_account_note") == [
        ("append_account_note", "acct-1", "Account locked on 2026-10-19 14:03 UTC (spam)")
    ]

    assert len(fake_notifier.messages) == 1
    message = fake_notifier.messages[0]
    assert "*Address:* a@inst.edu" in message
    assert "*Count:* 50" in message
    assert "*Origin IP:* 203.0.113.9 (foreign: US)" in message
    assert "*New password:* S3cret!pw" in message
    assert "*Locked:* Account status changed to locked" in message
    assert "*Note:* Note added" in message


@pytest.mark.asyncio
async def test_missing_account_short_circuits(fake_admin, alert_service, fake_notifier):
    service = _service(fake_admin, alert_service)

    result = await service.remediate("token-1", SENDER, "203.0.113.9", "US", 50)

    assert result.account_found is False
    assert fake_notifier.messages == ["No such account for email: a@inst.edu"]
    assert fake_admin.called("reset_password") == []
    assert fake_admin.called("lock_account") == []
    assert fake_admin.called("append_account_note") == []


@pytest.mark.asyncio
async def test_step_failures_are_folded_into_report(fake_admin, alert_service, fake_notifier):
    fake_admin.accounts[SENDER] = "acct-1"
    fake_admin.reset_error = ZimbraAdminError("invalid password", kind=AdminErrorKind.FATAL)
    fake_admin.lock_error = RuntimeError("backend down")
    service = _service(fake_admin, alert_service)

    result = await service.remediate("token-1", SENDER, "203.0.113.9", "US", 50)

    assert result.password_reset.status is StepStatus.FAILED
    assert result.lock.status is StepStatus.FAILED
    assert result.note.ok
    # Later steps still ran
    assert len(fake_admin.called("append_account_note")) == 1

    message = fake_notifier.messages[0]
    assert "New password" not in message
    assert "*Password reset:* Password reset failed: invalid password" in message
    assert "*Locked:* Failed to lock the account: backend down" in message
    assert len(fake_notifier.messages) == 1


@pytest.mark.asyncio
async def test_already_locked_account_is_not_relocked(fake_admin, alert_service, fake_notifier):
    fake_admin.accounts[SENDER] = "acct-1"
    fake_admin.status = "locked"
    service = _service(fake_admin, alert_service)

    result = await service.remediate("token-1", SENDER, "203.0.113.9", "US", 50)

    assert result.lock.status is StepStatus.SKIPPED
    assert fake_admin.called("lock_account") == []
    assert "*Locked:* Account was already locked" in fake_notifier.messages[0]


@pytest.mark.asyncio
async def test_lookup_failure_other_than_not_found_propagates(fake_admin, alert_service, fake_notifier):
    fake_admin.lookup_error = ZimbraAdminError("auth credentials have expired", kind=AdminErrorKind.AUTH)
    service = _service(fake_admin, alert_service)

    with pytest.raises(ZimbraAdminError) as exc_info:
        await service.remediate("token-1", SENDER, "203.0.113.9", "US", 50)

    assert exc_info.value.kind is AdminErrorKind.AUTH
    assert fake_notifier.messages == []
    assert fake_admin.called("reset_password") == []


def test_report_omits_foreign_marker_for_home_country():
    message = compose_report(
        SENDER,
        12,
        "198.51.100.7",
        "BR",
        StepOutcome.skipped("Password reset skipped: account id unavailable"),
        StepOutcome.succeeded("Account status changed to locked"),
        StepOutcome.succeeded("Note added"),
    )

    assert "*Origin IP:* 198.51.100.7," in message
    assert "foreign" not in message
    assert "*Password reset:* Password reset skipped" in message


@pytest.mark.asyncio
async def test_report_is_markdown_with_escaped_values(fake_admin, alert_service, fake_notifier):
    fake_admin.accounts["john_doe@inst.edu"] = "acct-2"
    service = _service(fake_admin, alert_service)

    await service.remediate("token-1", "john_doe@inst.edu", "203.0.113.9", "US", 50)
    await service.remediate("token-1", "jane_roe@inst.edu", "203.0.113.9", "US", 50)

    assert fake_notifier.markdown_flags == [True, False]
    assert "*Address:* john\\_doe@inst.edu" in fake_notifier.messages[0]
    # Plain notices are escaped by the notifier itself
    assert fake_notifier.messages[1] == "No such account for email: jane_roe@inst.edu"
