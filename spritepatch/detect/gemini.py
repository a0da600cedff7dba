from __future__ import annotations

import io
import json
import logging
import os
import re
from typing import Any

from PIL import Image

from spritepatch.constants import DEFAULT_DETECTOR_MODEL, DETECTOR_API_KEY_ENVS
from spritepatch.errors import ConfigurationError, DetectorError, DetectorParseError
from spritepatch.models import AnalysisResult

LOGGER = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?", re.IGNORECASE)

DETECTOR_PROMPT = """You are a specialized character sprite sheet analyst.
Task: Detect coordinates on a composited character sprite sheet.
1. "mainBody": Bounding box of the full portrait (body + head), usually the largest figure.
2. "mainFace": Precise bounding box of the facial feature region (eyes/nose/mouth) ON the main body.
3. "patches": Array of bounding boxes, one per separate expression variant (small rectangles), usually at the bottom or side.

Rules:
- Coordinates: [0, 1000] normalized.
- Return ONLY valid JSON.
- Accuracy is paramount for the face alignment."""


def _rect_schema() -> dict[str, Any]:
    return {
        "type": "OBJECT",
        "properties": {key: {"type": "NUMBER"} for key in ("x", "y", "w", "h")},
        "required": ["x", "y", "w", "h"],
    }


RESPONSE_SCHEMA: dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "mainBody": _rect_schema(),
        "mainFace": _rect_schema(),
        "patches": {"type": "ARRAY", "items": _rect_schema()},
    },
    "required": ["mainFace", "mainBody", "patches"],
}


def parse_analysis_response(text: str | None) -> AnalysisResult:
    """Parse a detector reply, tolerating Markdown code fences around the JSON."""
    if not text or not text.strip():
        raise DetectorParseError("detector returned an empty response")
    cleaned = _FENCE_PATTERN.sub("", text).strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        LOGGER.error("detector response is not JSON: %s", text)
        raise DetectorParseError(f"detector response is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise DetectorParseError("detector response must be a JSON object")
    try:
        return AnalysisResult.from_dict(data)
    except (KeyError, TypeError, ValueError) as exc:
        raise DetectorParseError(f"detector response is missing or has invalid fields: {exc}") from exc


def resolve_api_key(explicit: str | None = None, env_names: tuple[str, ...] = DETECTOR_API_KEY_ENVS) -> str:
    candidates = [explicit] + [os.environ.get(name) for name in env_names]
    for value in candidates:
        text = (value or "").strip()
        if text and text != "undefined":
            return text
    raise ConfigurationError(
        "detector API key is not configured; set one of "
        + ", ".join(env_names)
        + " or detector.api_key in the config file"
    )


class GeminiRegionDetector:
    """Ask a Gemini model for mainBody / mainFace / patch rects."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_DETECTOR_MODEL,
        thinking_budget: int = 4096,
    ) -> None:
        self.api_key = resolve_api_key(api_key)
        self.model = model
        self.thinking_budget = thinking_budget
        self._client = None

    def _get_client(self):
        if self._client is None:
            try:
                from google import genai
            except ImportError as exc:
                raise ConfigurationError(
                    "google-genai is not installed (`pip install spritepatch[ai]`)"
                ) from exc
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def detect(self, image: Image.Image) -> AnalysisResult:
        client = self._get_client()
        from google.genai import types

        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        LOGGER.info("requesting region analysis from %s", self.model)
        try:
            response = client.models.generate_content(
                model=self.model,
                contents=[
                    types.Part.from_bytes(data=buffer.getvalue(), mime_type="image/png"),
                    DETECTOR_PROMPT,
                ],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=RESPONSE_SCHEMA,
                    thinking_config=types.ThinkingConfig(thinking_budget=self.thinking_budget),
                ),
            )
        except Exception as exc:
            LOGGER.error("region analysis request failed: %s", exc)
            raise DetectorError(f"region analysis request failed: {exc}") from exc
        return parse_analysis_response(getattr(response, "text", None))
