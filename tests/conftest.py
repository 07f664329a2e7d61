import pytest

from queue_sentinel.services.alerting.alert_service import AlertService
from queue_sentinel.services.alerting.dedup_cache import AlertDedupCache
from queue_sentinel.services.classification_service import ClassificationPolicy
from tests.fakes import FakeAdminClient, FakeClock, FakeNotifier


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_notifier():
    return FakeNotifier()


@pytest.fixture
def alert_service(fake_notifier, fake_clock):
    return AlertService(fake_notifier, AlertDedupCache(window_seconds=600, clock=fake_clock))


@pytest.fixture
def fake_admin():
    return FakeAdminClient()


@pytest.fixture
def policy():
    return ClassificationPolicy(
        count_threshold=10,
        institutional_domain="inst.edu",
        known_services=("google.com", "outlook.com", "microsoft.com", "hotmail.com", "yahoo.com"),
    )
