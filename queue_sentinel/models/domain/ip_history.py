"""
Historical origin IPs per sender.

Grows monotonically: an address is added to a sender's list the first time
it is observed and is never removed.
"""

from typing import Any


class IpHistory:
    """Sender address -> distinct origin IPs ever observed, in first-seen order."""

    def __init__(self, data: dict[str, list[str]] | None = None):
        self._ips: dict[str, list[str]] = {}
        for sender, ips in (data or {}).items():
            for ip in ips:
                self.record(sender, ip)

    @classmethod
    def from_dict(cls, data: Any) -> "IpHistory":
        """Build from a decoded JSON document; non-dict payloads yield an empty history."""
        if not isinstance(data, dict):
            return cls()
        cleaned = {
            str(sender): [str(ip) for ip in ips]
            for sender, ips in data.items()
            if isinstance(ips, list)
        }
        return cls(cleaned)

    def has_seen(self, sender: str, ip: str) -> bool:
        return ip in self._ips.get(sender, ())

    def record(self, sender: str, ip: str) -> bool:
        """Remember ``ip`` for ``sender``. Returns True if it was not known before."""
        known = self._ips.setdefault(sender, [])
        if ip in known:
            return False
        known.append(ip)
        return True

    def ips_for(self, sender: str) -> list[str]:
        return list(self._ips.get(sender, ()))

    def to_dict(self) -> dict[str, list[str]]:
        return {sender: list(ips) for sender, ips in self._ips.items()}

    def __contains__(self, sender: object) -> bool:
        return sender in self._ips

    def __len__(self) -> int:
        return len(self._ips)
