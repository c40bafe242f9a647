from __future__ import annotations

import json
import logging
from typing import Any
from urllib import request
from urllib.error import HTTPError, URLError

from vidshelf.errors import MetadataDraftError

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "gemini"
DEFAULT_MODEL = "gemini-3-flash-preview"
DEFAULT_ENDPOINT = "https://generativelanguage.googleapis.com"
DEFAULT_TIMEOUT_SECONDS = 45
DEFAULT_MAX_RETRIES = 2
MAX_TAGS = 5

PROMPT_TEMPLATE = (
    'I have a video file named "{title}".\n'
    "Please generate a professional, concise description (max 2 sentences) for this video content, "
    "assuming standard context based on the title.\n"
    "Also, suggest 5 relevant tags for organizing this video.\n"
    'Answer with a JSON object: {{"description": string, "tags": [string]}}.'
)

RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "description": {
            "type": "STRING",
            "description": "A professional summary of the video content based on the title.",
        },
        "tags": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "description": "A list of 5 relevant tags.",
        },
    },
    "required": ["description", "tags"],
}


def draft_video_metadata(
    video_title: str,
    *,
    provider: str = DEFAULT_PROVIDER,
    endpoint: str = DEFAULT_ENDPOINT,
    model: str = DEFAULT_MODEL,
    api_key: str | None = None,
    timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    max_retries: int = DEFAULT_MAX_RETRIES,
) -> dict[str, Any]:
    """Draft a short description and tags for a video title with a generative text model.

    Invalid model output is retried; after the last attempt the error is
    raised as MetadataDraftError so the caller can show it. An empty model
    answer yields an empty draft.
    """

    prompt = PROMPT_TEMPLATE.format(title=video_title)
    last_error: Exception | None = None

    for attempt in range(max(0, max_retries) + 1):
        try:
            if provider == "gemini":
                if not api_key:
                    raise MetadataDraftError("Gemini provider requires an API key.")
                response_text = _request_gemini(
                    endpoint=endpoint,
                    model=model,
                    api_key=api_key,
                    prompt=prompt,
                    timeout_seconds=timeout_seconds,
                )
            elif provider == "ollama":
                response_text = _request_ollama(
                    endpoint=endpoint,
                    model=model,
                    prompt=prompt,
                    timeout_seconds=timeout_seconds,
                )
            else:
                raise MetadataDraftError(f"Unknown LLM provider: {provider}")

            if not response_text.strip():
                return {"description": "", "tags": []}
            return _validate_draft_schema(json.loads(response_text))
        except MetadataDraftError:
            raise
        except (json.JSONDecodeError, ValueError, HTTPError, URLError, TimeoutError, OSError, KeyError, TypeError) as exc:
            logger.warning("Metadata draft attempt %d failed: %s", attempt + 1, exc)
            last_error = exc
            continue

    raise MetadataDraftError(f"Metadata drafting failed for '{video_title}': {last_error}") from last_error


def _request_gemini(*, endpoint: str, model: str, api_key: str, prompt: str, timeout_seconds: int) -> str:
    body = json.dumps(
        {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": RESPONSE_SCHEMA,
            },
        }
    ).encode("utf-8")

    req = request.Request(
        f"{endpoint.rstrip('/')}/v1beta/models/{model}:generateContent",
        data=body,
        method="POST",
        headers={"Content-Type": "application/json", "x-goog-api-key": api_key},
    )

    with request.urlopen(req, timeout=timeout_seconds) as response:
        payload = json.loads(response.read().decode("utf-8"))

    candidates = payload.get("candidates") or []
    if not candidates:
        return ""
    parts = candidates[0].get("content", {}).get("parts", [])
    return "".join(str(part.get("text", "")) for part in parts)


def _request_ollama(*, endpoint: str, model: str, prompt: str, timeout_seconds: int) -> str:
    body = json.dumps(
        {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "format": "json",
        }
    ).encode("utf-8")

    req = request.Request(
        f"{endpoint.rstrip('/')}/api/generate",
        data=body,
        method="POST",
        headers={"Content-Type": "application/json"},
    )

    with request.urlopen(req, timeout=timeout_seconds) as response:
        payload = json.loads(response.read().decode("utf-8"))

    content = payload.get("response")
    if not isinstance(content, str):
        raise ValueError("Ollama response missing JSON text in 'response' field.")
    return content


def _validate_draft_schema(payload: Any) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValueError("Draft must be a JSON object.")

    description = payload["description"]
    tags = payload["tags"]

    if not isinstance(description, str):
        raise ValueError("description must be a string.")
    if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
        raise ValueError("tags must be a list of strings.")

    cleaned_tags: list[str] = []
    for tag in tags:
        stripped = tag.strip()
        if stripped and stripped not in cleaned_tags:
            cleaned_tags.append(stripped)

    return {
        "description": description.strip(),
        "tags": cleaned_tags[:MAX_TAGS],
    }
