# engagement_crm/services/messaging_client.py
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

import httpx

from engagement_crm.core.config import get_settings


class MessagingClientError(RuntimeError):
    """
    Raised when the messaging collaborator rejects a send or cannot be reached.
    """


class TemplateKind(str, Enum):
    EXPERIENCE_RATING = "experience_rating"
    MISSED_MEETING = "missed_meeting"


class MessagingClient:
    """
    Thin client for the outbound messaging collaborator.

    Contract
    --------
    - One POST per message with `(recipient, template, dedup_key, parameters)`.
    - The dedup key is also sent as `Idempotency-Key`; the collaborator
      guarantees at most one delivered effect per key, so callers may resend
      freely.
    - Every request is bounded by `timeout_seconds`.
    """

    def __init__(
        self,
        api_url: str,
        api_token: Optional[str] = None,
        timeout_seconds: float = 10.0,
    ) -> None:
        if not api_url:
            raise ValueError("api_url is required")

        self._api_url = api_url
        self._api_token = api_token
        self._timeout_seconds = timeout_seconds

    async def send(
        self,
        recipient: str,
        template_kind: TemplateKind,
        dedup_key: str,
        parameters: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Send one templated message.

        Returns the collaborator's JSON acknowledgement (empty dict when the
        body is not JSON). Raises MessagingClientError on transport errors or
        non-2xx responses.
        """
        headers = {
            "Accept": "application/json",
            "Idempotency-Key": dedup_key,
        }
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"

        body = {
            "recipient": recipient,
            "template": template_kind.value,
            "dedup_key": dedup_key,
            "parameters": parameters,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                resp = await client.post(self._api_url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise MessagingClientError(f"Messaging request failed: {exc}") from exc

        if resp.status_code // 100 != 2:
            raise MessagingClientError(
                f"Messaging send failed (status={resp.status_code}): {resp.text}"
            )

        try:
            payload = resp.json()
        except ValueError:
            return {}
        return payload if isinstance(payload, dict) else {}


_messaging_client_instance: Optional[MessagingClient] = None


def get_messaging_client() -> Optional[MessagingClient]:
    """
    Lazily construct the shared MessagingClient from settings.

    Returns None when messaging is not configured; dispatch then reports
    every recipient as skipped instead of failing.
    """
    global _messaging_client_instance
    if _messaging_client_instance is None:
        settings = get_settings()
        if not settings.MESSAGING_API_URL:
            return None
        _messaging_client_instance = MessagingClient(
            api_url=settings.MESSAGING_API_URL,
            api_token=settings.MESSAGING_API_TOKEN,
            timeout_seconds=settings.MESSAGING_TIMEOUT_SECONDS,
        )
    return _messaging_client_instance
