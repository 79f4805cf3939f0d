# engagement_crm/services/insights_client.py
from __future__ import annotations

import json
import logging
from typing import Any, Optional

import httpx

from engagement_crm.core.config import get_settings
from engagement_crm.core.errors import MalformedInsightsResponse
from engagement_crm.schemas.analytics import AiInsights, MeetingsStats
from engagement_crm.services.insights_prompt import MEETING_INSIGHTS_PROMPT

logger = logging.getLogger(__name__)


class InsightsClientError(RuntimeError):
    """
    Raised when the text-generation provider cannot be reached or refuses
    the request.
    """


class InsightsClient:
    """
    Minimal chat-completions client used to turn meeting stats into text.
    """

    def __init__(
        self,
        api_key: str,
        api_url: str,
        model: str,
        timeout_seconds: float = 20.0,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")

        self._api_key = api_key
        self._api_url = api_url
        self._model = model
        self._timeout_seconds = timeout_seconds

    async def complete(self, prompt: str) -> str:
        """
        Send a single user prompt and return the assistant's text.
        """
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Accept": "application/json",
        }
        body = {
            "model": self._model,
            "messages": [{"role": "user", "content": prompt}],
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                resp = await client.post(self._api_url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            raise InsightsClientError(f"Insights request failed: {exc}") from exc

        if resp.status_code // 100 != 2:
            raise InsightsClientError(
                f"Insights request failed (status={resp.status_code}): {resp.text}"
            )

        try:
            payload = resp.json()
            return payload["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise InsightsClientError(f"Unexpected insights response shape: {exc}") from exc


def build_insights_prompt(stats: MeetingsStats) -> str:
    breakdown = stats.duration_breakdown.model_dump(by_alias=True)
    breakdown_text = ", ".join(f"{key}: {value}" for key, value in breakdown.items())
    timeline_text = ", ".join(
        f"{point.date.isoformat()}: {point.count}" for point in stats.timeline
    )
    return MEETING_INSIGHTS_PROMPT.format(
        total_members=stats.total_members,
        total_meetings=stats.total_meetings,
        avg_engagement_rate=f"{stats.avg_engagement_rate:.2f}",
        duration_breakdown=breakdown_text,
        timeline=timeline_text,
    )


def parse_insights_response(text: str) -> AiInsights:
    """
    Parse the model output into AiInsights.

    Accepts a bare JSON object, optionally wrapped in a markdown code fence.
    Missing keys become empty lists and non-string items are dropped.

    Raises MalformedInsightsResponse when the text is not a JSON object.
    """
    cleaned = (text or "").strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`").strip()
        if cleaned.lower().startswith("json"):
            cleaned = cleaned[4:].strip()

    try:
        parsed: Any = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise MalformedInsightsResponse(f"insights response is not JSON: {exc}") from exc

    if not isinstance(parsed, dict):
        raise MalformedInsightsResponse("insights response is not a JSON object")

    return AiInsights(
        community_insights=_string_list(parsed.get("communityInsights")),
        recommendations=_string_list(parsed.get("recommendations")),
    )


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


async def generate_insights(
    stats: MeetingsStats,
    client: Optional[InsightsClient] = None,
) -> AiInsights:
    """
    Produce insights for the given stats; never raises.

    Any provider failure or unparseable output degrades to empty lists.
    """
    client = client or get_insights_client()
    if client is None:
        return AiInsights()

    prompt = build_insights_prompt(stats)
    try:
        text = await client.complete(prompt)
        return parse_insights_response(text)
    except InsightsClientError as exc:
        logger.warning("Insights generation failed: %s", exc)
    except MalformedInsightsResponse as exc:
        logger.warning("Discarding malformed insights response: %s", exc.detail)
    return AiInsights()


_insights_client_instance: Optional[InsightsClient] = None


def get_insights_client() -> Optional[InsightsClient]:
    global _insights_client_instance
    if _insights_client_instance is None:
        settings = get_settings()
        if not settings.OPENROUTER_API_KEY:
            return None
        _insights_client_instance = InsightsClient(
            api_key=settings.OPENROUTER_API_KEY,
            api_url=settings.OPENROUTER_API_URL,
            model=settings.INSIGHTS_MODEL,
            timeout_seconds=settings.INSIGHTS_TIMEOUT_SECONDS,
        )
    return _insights_client_instance
