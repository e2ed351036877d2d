"""Hugging Face Hub source adapter that wraps HfApi with rate limiting."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, cast

if TYPE_CHECKING:
    from huggingface_hub import HfApi, ModelInfo  # type: ignore[import]
else:
    HfApi = Any  # type: ignore[assignment]
    ModelInfo = Any  # type: ignore[assignment]

from aimodeldb.clients.base_client import BaseClient
from aimodeldb.net.rate_governor import DATA_SOURCE_PROFILE, RateGovernor
from aimodeldb.net.rate_limiter import RateLimiter

DEFAULT_MAX_CALLS = 5
DEFAULT_PERIOD_SECONDS = 1.0
DEFAULT_LIMIT = 100
HF_BASE_URL = "https://huggingface.co"


class HFClient(BaseClient[Any]):
    """Thin wrapper around ``huggingface_hub.HfApi`` with rate limiting."""

    name = "huggingface"

    def __init__(
        self,
        *,
        api: Optional[Any] = None,
        rate_limiter: Optional[RateLimiter] = None,
        logger: Optional[logging.Logger] = None,
        governor: Optional[RateGovernor] = None,
    ) -> None:
        limiter = rate_limiter or RateLimiter(
            max_calls=DEFAULT_MAX_CALLS,
            period_seconds=DEFAULT_PERIOD_SECONDS,
        )
        super().__init__(
            limiter,
            logger=logger,
            governor=governor,
            governor_key="source:huggingface",
            governor_profile=DATA_SOURCE_PROFILE,
        )
        if api is not None:
            self._api = api
        else:
            try:
                from huggingface_hub import \
                    HfApi as RuntimeHfApi  # type: ignore[import]
            except ModuleNotFoundError as error:  # pragma: no cover
                message = (
                    "huggingface_hub is not installed. "
                    "Run 'pip install -e .' first."
                )
                raise RuntimeError(message) from error

            self._api = cast(HfApi, RuntimeHfApi())

    def list_models(
        self,
        *,
        search: Optional[str] = None,
        author: Optional[str] = None,
        sort: str = "downloads",
        limit: int = DEFAULT_LIMIT,
    ) -> List[ModelInfo]:
        """List model metadata from the Hub, most downloaded first."""

        def _operation() -> List[ModelInfo]:
            self._logger.debug(
                "Listing HF models search=%s author=%s limit=%d",
                search,
                author,
                limit,
            )
            return list(
                self._api.list_models(
                    search=search,
                    author=author,
                    sort=sort,
                    limit=limit,
                    cardData=True,
                )
            )

        return self._execute_with_rate_limit(
            _operation,
            name=f"hf.list_models({search or author or '*'})",
        )

    def fetch(
        self, config: Optional[Mapping[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Return raw, provider-shaped records for the sync pipeline."""

        options = dict(config or {})
        infos = self.list_models(
            search=options.get("search"),
            author=options.get("author"),
            sort=options.get("sort", "downloads"),
            limit=int(options.get("limit", DEFAULT_LIMIT)),
        )
        return [self._to_record(info) for info in infos]

    @staticmethod
    def _to_record(info: ModelInfo) -> Dict[str, Any]:
        repo_id = str(
            getattr(info, "id", None) or getattr(info, "modelId", "")
        )
        card = getattr(info, "card_data", None) or getattr(
            info, "cardData", None
        )
        if card is not None and not isinstance(card, Mapping):
            card = card.to_dict() if hasattr(card, "to_dict") else {}
        card = card or {}
        license_name = (
            card.get("license") if isinstance(card, Mapping) else None
        )
        return {
            "id": repo_id,
            "name": repo_id.split("/", 1)[-1] if repo_id else None,
            "author": getattr(info, "author", None)
            or (repo_id.split("/", 1)[0] if "/" in repo_id else None),
            "url": f"{HF_BASE_URL}/{repo_id}" if repo_id else None,
            "repo": repo_id or None,
            "downloads": getattr(info, "downloads", None),
            "likes": getattr(info, "likes", None),
            "tags": list(getattr(info, "tags", None) or []),
            "pipeline_tag": getattr(info, "pipeline_tag", None),
            "license": license_name,
            "created_at": _isoformat(getattr(info, "created_at", None)),
            "last_modified": _isoformat(getattr(info, "last_modified", None)),
        }


def _isoformat(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)
