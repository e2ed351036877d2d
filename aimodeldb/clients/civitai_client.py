"""Civitai source adapter reading the public REST catalog with requests."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

import requests  # type: ignore[import]

from aimodeldb.clients.base_client import BaseClient
from aimodeldb.clients.errors import ProviderHTTPError, ProviderResponseError
from aimodeldb.net.rate_governor import DATA_SOURCE_PROFILE, RateGovernor
from aimodeldb.net.rate_limiter import RateLimiter

DEFAULT_MAX_CALLS = 2
DEFAULT_PERIOD_SECONDS = 1.0
DEFAULT_LIMIT = 100
DEFAULT_SORT = "Most Downloaded"
DEFAULT_TIMEOUT_SECONDS = 30.0
CIVITAI_API_URL = "https://civitai.com/api/v1"
CIVITAI_SITE_URL = "https://civitai.com"
COMMUNITY_LICENSE = "CreativeML Open RAIL++-M"


class CivitaiClient(BaseClient[Any]):
    """List community image models from Civitai with rate limiting."""

    name = "civitai"

    def __init__(
        self,
        *,
        session: Optional[requests.Session] = None,
        rate_limiter: Optional[RateLimiter] = None,
        logger: Optional[logging.Logger] = None,
        governor: Optional[RateGovernor] = None,
        base_url: str = CIVITAI_API_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        limiter = rate_limiter or RateLimiter(
            max_calls=DEFAULT_MAX_CALLS,
            period_seconds=DEFAULT_PERIOD_SECONDS,
        )
        super().__init__(
            limiter,
            logger=logger,
            governor=governor,
            governor_key="source:civitai",
            governor_profile=DATA_SOURCE_PROFILE,
        )
        self._session = session or requests.Session()
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def list_models(
        self,
        *,
        query: Optional[str] = None,
        sort: str = DEFAULT_SORT,
        limit: int = DEFAULT_LIMIT,
        nsfw: Optional[bool] = None,
    ) -> List[Mapping[str, Any]]:
        """Return the ``items`` of one ``/models`` page."""

        params: Dict[str, Any] = {"limit": limit, "sort": sort}
        if query:
            params["query"] = query
        if nsfw is not None:
            params["nsfw"] = "true" if nsfw else "false"
        url = f"{self._base_url}/models"

        def _operation() -> List[Mapping[str, Any]]:
            self._logger.debug("Listing Civitai models %s", params)
            response = self._session.get(
                url, params=params, timeout=self._timeout
            )
            if not 200 <= response.status_code < 300:
                raise ProviderHTTPError(
                    response.status_code, (response.text or "")[:300]
                )
            try:
                data = response.json()
            except ValueError as error:
                raise ProviderResponseError(
                    "civitai returned a non-JSON body"
                ) from error
            items = data.get("items") if isinstance(data, Mapping) else None
            if not isinstance(items, list):
                raise ProviderResponseError(
                    "civitai response has no 'items' list"
                )
            return [item for item in items if isinstance(item, Mapping)]

        return self._execute_with_rate_limit(
            _operation, name=f"civitai.list_models({query or '*'})"
        )

    def fetch(
        self, config: Optional[Mapping[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Return raw, provider-shaped records for the sync pipeline."""

        options = dict(config or {})
        items = self.list_models(
            query=options.get("search") or options.get("query"),
            sort=options.get("sort", DEFAULT_SORT),
            limit=min(int(options.get("limit", DEFAULT_LIMIT)), DEFAULT_LIMIT),
            nsfw=options.get("nsfw"),
        )
        return [self._to_record(item) for item in items]

    @staticmethod
    def _to_record(item: Mapping[str, Any]) -> Dict[str, Any]:
        model_id = item.get("id")
        creator = item.get("creator")
        stats = item.get("stats")
        versions = item.get("modelVersions")
        latest = versions[0] if isinstance(versions, list) and versions else {}
        if not isinstance(latest, Mapping):
            latest = {}
        model_type = item.get("type")

        raw_tags = item.get("tags")
        if not isinstance(raw_tags, list):
            raw_tags = []
        tags = [str(tag) for tag in raw_tags if tag]
        if model_type:
            tags.append(str(model_type).lower())
        # The platform's own rating is carried as an exact tag.
        if item.get("nsfw") and "nsfw" not in tags:
            tags.append("nsfw")

        restrictions = []
        if item.get("allowNoCredit") is False:
            restrictions.append("Attribution required")
        if item.get("allowCommercialUse") in ("None", [], ["None"]):
            restrictions.append("No commercial use")

        return {
            "id": f"civitai-{model_id}" if model_id is not None else None,
            "name": item.get("name"),
            "provider": creator.get("username")
            if isinstance(creator, Mapping)
            else None,
            "description": item.get("description"),
            "type": model_type,
            "url": f"{CIVITAI_SITE_URL}/models/{model_id}"
            if model_id is not None
            else None,
            "tags": tags,
            "downloads": stats.get("downloadCount")
            if isinstance(stats, Mapping)
            else None,
            "license": COMMUNITY_LICENSE,
            "usage_restrictions": restrictions,
            "images": [
                image.get("url")
                for image in latest.get("images") or []
                if isinstance(image, Mapping) and image.get("url")
            ],
            "release_date": latest.get("publishedAt")
            or latest.get("createdAt"),
            "updated_at": latest.get("updatedAt"),
        }
