from __future__ import annotations

import json
import logging
import socket
from datetime import date, datetime, timezone
from typing import Any, Optional
from urllib.error import URLError
from urllib.request import Request, urlopen

from config import get_settings


logger = logging.getLogger(__name__)


def _default(value: Any) -> str:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


class LedgerNotifier:
    """Fire-and-forget webhook for committed ledger events.

    Runs after the response is sent, outside any database transaction.
    Delivery failures are logged and dropped.
    """

    def __init__(self, webhook_url: Optional[str] = None, timeout: float = 5.0) -> None:
        self.webhook_url = webhook_url or get_settings().notify_webhook_url
        self.timeout = timeout

    def ledger_event(self, event: str, payload: dict[str, Any]) -> bool:
        if not self.webhook_url:
            logger.debug(f"notify_skip: event={event} reason=no_webhook")
            return False
        body = {
            "event": event,
            "sent_at": datetime.now(timezone.utc),
            "payload": payload,
        }
        req = Request(
            self.webhook_url,
            data=json.dumps(body, default=_default).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                status = resp.status
        except (URLError, socket.timeout, TimeoutError) as exc:
            logger.warning(f"notify_failed: event={event} error={exc}")
            return False
        logger.info(f"notify_sent: event={event} status={status}")
        return 200 <= status < 300
