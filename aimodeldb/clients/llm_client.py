"""LLM provider client used to enrich incomplete catalog records."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

import requests  # type: ignore[import]

from aimodeldb.clients.base_client import BaseClient
from aimodeldb.clients.errors import (ProviderHTTPError,
                                      ProviderResponseError)
from aimodeldb.clients.providers import ProviderConfig
from aimodeldb.config import (ANTHROPIC_VERSION, LLM_REQUEST_TIMEOUT_SECONDS,
                              LLM_TEMPERATURE)
from aimodeldb.models.catalog import Model, missing_fields
from aimodeldb.models.validation import ValidationSource
from aimodeldb.net.rate_limiter import RateLimiter

DEFAULT_MAX_CALLS = 3
DEFAULT_PERIOD_SECONDS = 1.0
ANTHROPIC_MAX_TOKENS = 2048

ENRICHABLE_FIELDS = frozenset(
    {
        "name",
        "provider",
        "domain",
        "description",
        "url",
        "repo",
        "license",
        "hosting",
        "pricing",
        "release_date",
        "updated_at",
        "tags",
        "parameters",
        "context_window",
        "indemnity",
        "data_provenance",
        "usage_restrictions",
        "benchmarks",
    }
)

SYSTEM_PROMPT = (
    "You are an AI model catalog curator. Fill in missing metadata for the "
    "model described by the user. Only report facts you are confident "
    "about; omit a field rather than guessing. Return a single JSON object "
    "using the keys of the input record (license as an object with name, "
    "type, commercial_use; pricing as a list of objects with unit, input, "
    "output, flat, currency). Return JSON only."
)

_SOURCE_HINTS = {
    ValidationSource.API: "Use your own knowledge of the model.",
    ValidationSource.WEBSEARCH: (
        "Search the web for the official model card, release notes and "
        "pricing page."
    ),
    ValidationSource.SCRAPING: (
        "Prefer facts stated on the model's own page (see url/repo)."
    ),
}

JsonValue = Union[Dict[str, Any], List[Any]]


def safe_json_from_text(text: str) -> Optional[JsonValue]:
    """Extract JSON from a model reply that may wrap it in prose or fences."""

    if not text:
        return None
    candidates = [text.strip()]
    for opener, closer in (("{", "}"), ("[", "]")):
        start = text.find(opener)
        end = text.rfind(closer)
        if start != -1 and end > start:
            candidates.append(text[start : end + 1])
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, (dict, list)):
            return parsed
    return None


def build_enrichment_prompt(
    model: Model, sources: Iterable[ValidationSource]
) -> str:
    record = model.to_dict()
    for key in ("isFavorite", "isNSFWFlagged", "flaggedImageUrls", "images"):
        record.pop(key, None)
    hints = [_SOURCE_HINTS[source] for source in sources]
    missing = ", ".join(missing_fields(model)) or "none"
    return (
        f"Model record:\n{json.dumps(record, indent=2)}\n\n"
        f"Missing fields: {missing}\n"
        + "\n".join(hints)
    )


class LLMClient(BaseClient[str]):
    """Speak the openai, anthropic, google and ollama chat protocols."""

    def __init__(
        self,
        *,
        rate_limiter: Optional[RateLimiter] = None,
        logger: Optional[logging.Logger] = None,
        session: Optional[requests.Session] = None,
        timeout: float = LLM_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        limiter = rate_limiter or RateLimiter(
            max_calls=DEFAULT_MAX_CALLS,
            period_seconds=DEFAULT_PERIOD_SECONDS,
        )
        super().__init__(limiter, logger=logger)
        self._session = session or requests.Session()
        self._timeout = timeout

    def enrich(
        self,
        model: Model,
        sources: Iterable[ValidationSource],
        provider: ProviderConfig,
    ) -> Dict[str, Any]:
        """Ask ``provider`` for the missing fields of ``model``.

        Returns a partial model payload restricted to enrichable keys.
        """

        source_list = list(sources) or [ValidationSource.API]
        prompt = build_enrichment_prompt(model, source_list)
        websearch = ValidationSource.WEBSEARCH in source_list
        text = self.complete(
            provider, SYSTEM_PROMPT, prompt, websearch=websearch
        )
        parsed = safe_json_from_text(text)
        if isinstance(parsed, list):
            parsed = next(
                (item for item in parsed if isinstance(item, dict)), None
            )
        if isinstance(parsed, dict) and isinstance(parsed.get("model"), dict):
            parsed = parsed["model"]
        if not isinstance(parsed, dict):
            raise ProviderResponseError(
                f"{provider.key} returned no JSON object for {model.name}"
            )
        return {
            key: value
            for key, value in parsed.items()
            if key in ENRICHABLE_FIELDS and value not in (None, "", [], {})
        }

    def complete(
        self,
        provider: ProviderConfig,
        system_prompt: str,
        user_prompt: str,
        *,
        websearch: bool = False,
    ) -> str:
        """Return the assistant text for one prompt."""

        url, headers, payload = self._build_request(
            provider, system_prompt, user_prompt, websearch=websearch
        )

        def _operation() -> str:
            response = self._session.post(
                url, headers=headers, json=payload, timeout=self._timeout
            )
            if not 200 <= response.status_code < 300:
                raise ProviderHTTPError(
                    response.status_code, _short(response.text)
                )
            try:
                data = response.json()
            except ValueError as error:
                raise ProviderResponseError(
                    f"{provider.key} returned a non-JSON body"
                ) from error
            return _extract_text(provider.protocol, data)

        return self._execute_with_rate_limit(
            _operation, name=f"llm.{provider.key}.complete"
        )

    def _build_request(
        self,
        provider: ProviderConfig,
        system_prompt: str,
        user_prompt: str,
        *,
        websearch: bool,
    ) -> tuple[str, Dict[str, str], Dict[str, Any]]:
        headers: Dict[str, str] = {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        headers.update(provider.headers)
        base = provider.endpoint
        model_name = provider.model_name

        if provider.protocol == "anthropic":
            headers["x-api-key"] = provider.api_key or ""
            headers["anthropic-version"] = ANTHROPIC_VERSION
            payload: Dict[str, Any] = {
                "model": model_name,
                "max_tokens": ANTHROPIC_MAX_TOKENS,
                "temperature": LLM_TEMPERATURE,
                "messages": [
                    {
                        "role": "user",
                        "content": f"{system_prompt}\n\n{user_prompt}",
                    }
                ],
            }
            if websearch:
                payload["tools"] = [
                    {"type": "web_search_20250305", "name": "web_search"}
                ]
            return f"{base}/messages", headers, payload

        if provider.protocol == "google":
            headers["x-goog-api-key"] = provider.api_key or ""
            payload = {
                "contents": [
                    {"parts": [{"text": f"{system_prompt}\n\n{user_prompt}"}]}
                ],
                "generationConfig": {"temperature": LLM_TEMPERATURE},
            }
            if websearch:
                payload["tools"] = [{"google_search": {}}]
            url = f"{base}/models/{model_name}:generateContent"
            return url, headers, payload

        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]
        if provider.protocol == "ollama":
            payload = {
                "model": model_name,
                "messages": messages,
                "stream": False,
                "format": "json",
                "options": {"temperature": LLM_TEMPERATURE},
            }
            return f"{base}/api/chat", headers, payload

        if provider.api_key:
            headers["Authorization"] = f"Bearer {provider.api_key}"
        payload = {
            "model": model_name,
            "messages": messages,
            "temperature": LLM_TEMPERATURE,
        }
        return f"{base}/chat/completions", headers, payload


def _extract_text(protocol: str, data: Mapping[str, Any]) -> str:
    try:
        if protocol == "anthropic":
            blocks = data["content"]
            return "".join(
                block.get("text", "")
                for block in blocks
                if block.get("type", "text") == "text"
            )
        if protocol == "google":
            parts = data["candidates"][0]["content"]["parts"]
            return "".join(part.get("text", "") for part in parts)
        if protocol == "ollama":
            return data["message"]["content"]
        choice = data["choices"][0]
        message = choice.get("message") or choice.get("delta") or {}
        return message["content"]
    except (KeyError, IndexError, TypeError) as error:
        raise ProviderResponseError(
            f"Unexpected {protocol} response shape"
        ) from error


def _short(text: str, limit: int = 300) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return f"{text[:limit]}..."
