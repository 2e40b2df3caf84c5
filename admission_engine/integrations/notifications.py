"""
Outbound notifications (SMS / messaging gateway).

The workflow engine treats every notification as best-effort: a False return or
an exception is logged and never fails the transition that triggered it.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, Optional

import httpx

from admission_engine.core.logging import get_logger

logger = get_logger(__name__)


def _jsonable(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v.isoformat() if isinstance(v, (date, datetime)) else v for k, v in payload.items()}


class NotificationDispatcher(ABC):
    """Sends one templated message to one destination (phone number)."""

    @abstractmethod
    async def send(self, destination: str, template_kind: str, payload: Dict[str, Any]) -> bool:
        """Return True when the gateway accepted the message."""


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Logs instead of sending. Used when no gateway is configured."""

    async def send(self, destination: str, template_kind: str, payload: Dict[str, Any]) -> bool:
        # Payload may carry temporary passwords; only the keys are logged
        logger.info(
            "Notification not sent (no gateway configured)",
            destination=destination,
            template_kind=template_kind,
            payload_keys=sorted(payload),
        )
        return True


class HttpNotificationDispatcher(NotificationDispatcher):
    """POSTs {destination, template, payload} as JSON to a messaging webhook."""

    def __init__(self, webhook_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._client = client

    async def send(self, destination: str, template_kind: str, payload: Dict[str, Any]) -> bool:
        body = {"destination": destination, "template": template_kind, "payload": _jsonable(payload)}
        if self._client is not None:
            response = await self._client.post(self.webhook_url, json=body, timeout=self.timeout)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.webhook_url, json=body)
        if response.is_success:
            return True
        logger.warning(
            "Notification gateway rejected message",
            template_kind=template_kind,
            status_code=response.status_code,
        )
        return False
