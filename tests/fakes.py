from queue_sentinel.models.domain.classification_domain import GeoLocation, StepOutcome
from queue_sentinel.models.domain.ip_history import IpHistory
from queue_sentinel.services.zimbra.admin_client import AdminErrorKind, ZimbraAdminError


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeNotifier:
    def __init__(self):
        self.messages: list[str] = []
        self.markdown_flags: list[bool] = []
        self.deliver = True

    async def send(self, text: str, markdown: bool = False) -> bool:
        self.messages.append(text)
        self.markdown_flags.append(markdown)
        return self.deliver


class FakeResolver:
    def __init__(self, results: dict[str, GeoLocation | None] | None = None):
        self.results = results or {}
        self.calls: list[str] = []

    async def resolve(self, ip: str) -> GeoLocation | None:
        self.calls.append(ip)
        return self.results.get(ip)


class FakeHistoryStore:
    def __init__(self, data: dict[str, list[str]] | None = None):
        self.data = data or {}
        self.loads = 0
        self.saves = 0

    async def load(self) -> IpHistory:
        self.loads += 1
        return IpHistory(self.data)

    async def save(self, history: IpHistory) -> None:
        self.saves += 1
        self.data = history.to_dict()


class FakeAdminClient:
    """Records every call; behaviour is tuned through the public attributes."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.snapshot = None
        self.fetch_error: Exception | None = None
        self.auth_error: Exception | None = None
        self.accounts: dict[str, str] = {}
        self.lookup_error: Exception | None = None
        self.status = "active"
        self.reset_error: Exception | None = None
        self.lock_error: Exception | None = None
        self.note_error: Exception | None = None

    async def authenticate(self) -> str:
        self.calls.append(("authenticate",))
        if self.auth_error:
            raise self.auth_error
        return "token-1"

    async def fetch_queue_snapshot(self, auth_token, server_name):
        self.calls.append(("fetch_queue_snapshot", server_name))
        if self.fetch_error:
            raise self.fetch_error
        return self.snapshot

    async def resolve_account_id(self, auth_token, address):
        self.calls.append(("resolve_account_id", address))
        if self.lookup_error:
            raise self.lookup_error
        if address not in self.accounts:
            raise ZimbraAdminError(
                f"no such account: {address}",
                kind=AdminErrorKind.NOT_FOUND,
                fault_code="account.NO_SUCH_ACCOUNT",
            )
        return self.accounts[address]

    async def reset_password(self, auth_token, account_id):
        self.calls.append(("reset_password", account_id))
        if self.reset_error:
            raise self.reset_error
        return StepOutcome.succeeded("Password reset", secret="S3cret!pw")

    async def get_account_status(self, auth_token, account_id):
        self.calls.append(("get_account_status", account_id))
        return self.status

    async def lock_account(self, auth_token, account_id):
        self.calls.append(("lock_account", account_id))
        if self.lock_error:
            raise self.lock_error
        return StepOutcome.succeeded("Account status changed to locked")

    async def append_account_note(self, auth_token, account_id, note):
        self.calls.append(("append_account_note", account_id, note))
        if self.note_error:
            raise self.note_error
        return StepOutcome.succeeded("Note added")

    def called(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]


