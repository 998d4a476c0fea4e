import json
import logging
import os
import re
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional
from zoneinfo import ZoneInfo

from huddle.config import settings
from huddle.gateway.base import DataGateway, GatewayError
from huddle.gateway.provider import gateway as default_gateway
from huddle.models import AiGeneratedEventDetails, EventValidationResult, ExtractedEventDetails

try:
    from openai import OpenAI
except Exception:  # pragma: no cover
    OpenAI = None

logger = logging.getLogger(__name__)

OPERATION_TYPE = "event_enhancement"
_TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")

SYSTEM_PROMPT = (
    "You improve community event drafts. Reply with one JSON object only, with keys: "
    "title (catchy and descriptive), description (what the event is about, who it is for and what "
    "participants can expect), suggestedTags (list of strings), recommendedDuration (minutes), "
    "recommendedCapacity (integer) and locationSuggestions (list of strings)."
)


def _normalize_env_value(value: str) -> str:
    normalized = value.strip()
    if len(normalized) >= 2 and normalized[0] == normalized[-1] and normalized[0] in {"'", '"'}:
        normalized = normalized[1:-1].strip()
    return normalized


def load_openai_api_key() -> str:
    api_key = _normalize_env_value(os.getenv("OPENAI_API_KEY", ""))
    if not api_key:
        key_file = _normalize_env_value(os.getenv("OPENAI_API_KEY_FILE", ""))
        if key_file:
            try:
                api_key = _normalize_env_value(Path(key_file).read_text(encoding="utf-8"))
            except OSError:
                logger.warning("OPENAI_API_KEY_FILE is set but unreadable.")
    if api_key.lower() in {"replace-with-openai-key", "your-openai-api-key"}:
        return ""
    return api_key


def validate_event_details(extracted: ExtractedEventDetails, today: Optional[date] = None) -> EventValidationResult:
    errors: list[str] = []
    suggestions: list[str] = []

    if not extracted.title or len(extracted.title.strip()) < 3:
        errors.append("Event title must be at least 3 characters long")
    if not extracted.description or len(extracted.description.strip()) < 10:
        errors.append("Event description must be at least 10 characters long")

    if extracted.date:
        try:
            event_date = date.fromisoformat(extracted.date.strip())
        except ValueError:
            errors.append("Invalid date format. Use YYYY-MM-DD")
        else:
            reference = today or datetime.now(ZoneInfo(settings.timezone)).date()
            if event_date < reference:
                errors.append("Event date cannot be in the past")

    if extracted.time and not _TIME_PATTERN.match(extracted.time.strip()):
        errors.append("Invalid time format. Use HH:MM format")
    if extracted.suggested_capacity is not None and extracted.suggested_capacity < 1:
        errors.append("Event capacity must be at least 1")
    if extracted.suggested_duration is not None and extracted.suggested_duration < 15:
        errors.append("Event duration must be at least 15 minutes")

    if not extracted.location and not extracted.is_online:
        suggestions.append("Consider adding a location or marking as online event")
    if not extracted.tags:
        suggestions.append("Adding tags helps others find your event")
    if not extracted.suggested_capacity:
        suggestions.append("Setting a capacity limit helps with planning")

    return EventValidationResult(is_valid=not errors, errors=errors, suggestions=suggestions)


class EventEnhancer:
    """Thin wrapper over the OpenAI Responses API that fills AI-enhanced event details."""

    def __init__(self, gateway: DataGateway, client: Any = None, model: Optional[str] = None) -> None:
        self.gateway = gateway
        self.model = model or settings.openai_model
        if client is None:
            api_key = load_openai_api_key()
            client = OpenAI(api_key=api_key) if api_key and OpenAI else None
        self.client = client
        self.llm_available = self.client is not None
        if not self.llm_available:
            logger.warning("Event enhancement disabled: set OPENAI_API_KEY and install the openai package.")

    def _record(self, community_id: Optional[str], status: str, error_message: Optional[str] = None) -> None:
        try:
            self.gateway.insert(
                "ai_generation_logs",
                {
                    "community_id": community_id,
                    "operation_type": OPERATION_TYPE,
                    "status": status,
                    "error_message": error_message,
                },
            )
        except GatewayError:
            logger.exception("Could not record AI generation log for %s", community_id)

    def enhance(
        self,
        extracted: ExtractedEventDetails,
        original_message: str,
        community_id: Optional[str] = None,
    ) -> Optional[AiGeneratedEventDetails]:
        if not self.llm_available:
            return None
        user_payload = {
            "original_message": original_message,
            "current_details": {
                "title": extracted.title,
                "date": extracted.date or "Not specified",
                "time": extracted.time or "Not specified",
                "location": extracted.location or "Not specified",
            },
        }
        try:
            response = self.client.responses.create(
                model=self.model,
                input=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": json.dumps(user_payload)},
                ],
                temperature=0.4,
            )
            content = (getattr(response, "output_text", "") or "").strip()
            if content.startswith("```"):
                content = content.strip("`").removeprefix("json").strip()
            details = AiGeneratedEventDetails.model_validate(json.loads(content))
        except Exception as exc:
            logger.exception("Event enhancement failed")
            self._record(community_id, "error", str(exc)[:500])
            return None
        self._record(community_id, "success")
        return details


event_enhancer = EventEnhancer(default_gateway)
