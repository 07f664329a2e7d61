"""
Telegram notifier for operator alerts.
Best effort: delivery failures are logged and never raised to the caller.

Messages use Telegram's legacy Markdown. Plain text is escaped as a whole;
callers that bold their own labels pass ``markdown=True`` and escape every
interpolated value with escape_markdown().
"""

import httpx

from queue_sentinel.config import Settings, settings
from queue_sentinel.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

TELEGRAM_API_BASE_URL = "https://api.telegram.org"
REQUEST_TIMEOUT = 10  # seconds
MESSAGE_TITLE = "*Mail Queue Monitor*"

# Entity delimiters of the legacy Markdown parse mode
MARKDOWN_SPECIAL_CHARS = ("\\", "_", "*", "`", "[")


def escape_markdown(text: object) -> str:
    """Escape ``text`` so Telegram renders it literally in Markdown mode."""
    escaped = str(text)
    for char in MARKDOWN_SPECIAL_CHARS:
        escaped = escaped.replace(char, f"\\{char}")
    return escaped


class TelegramNotifier:
    """Sends Markdown messages to one Telegram chat."""

    def __init__(
        self,
        config: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.config = config or settings
        self.bot_token = self.config.TELEGRAM_BOT_TOKEN
        self.chat_id = self.config.TELEGRAM_CHAT_ID
        self.hostname = self.config.MAIL_SERVER_HOSTNAME
        self._client = client or httpx.AsyncClient(timeout=REQUEST_TIMEOUT)

        if not self.config.telegram_configured():
            logger.warning("Telegram not configured, alerts will only be logged")

    async def close(self) -> None:
        await self._client.aclose()

    def format_message(self, text: str, markdown: bool = False) -> str:
        body = text if markdown else escape_markdown(text)
        return f"{MESSAGE_TITLE} {escape_markdown(self.hostname)}\n\n{body}"

    async def send(self, text: str, markdown: bool = False) -> bool:
        """
        Deliver ``text`` to the operator chat.

        Args:
            text: message body
            markdown: ``text`` is already Markdown with its values escaped

        Returns:
            bool: True if Telegram accepted the message
        """
        message = self.format_message(text, markdown=markdown)

        if not self.config.telegram_configured():
            logger.info("Alert (not delivered)", message=text)
            return False

        url = f"{TELEGRAM_API_BASE_URL}/bot{self.bot_token}/sendMessage"
        payload = {"chat_id": self.chat_id, "text": message, "parse_mode": "Markdown"}

        try:
            response = await self._client.post(url, json=payload)
        except httpx.RequestError as e:
            logger.error(
                "Failed to send Telegram message",
                error=str(e),
                error_type=type(e).__name__,
                undelivered_message=text,
            )
            return False

        if not response.is_success:
            logger.error(
                "Telegram rejected message",
                status_code=response.status_code,
                response_text=response.text[:200] if response.text else "",
                undelivered_message=text,
            )
            return False

        logger.debug("Telegram message sent", length=len(message))
        return True
