"""LLM provider configuration and selection."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from aimodeldb.clients.errors import NoProviderConfigured
from aimodeldb.utils.env import env_list, load_dotenv

_LOGGER = logging.getLogger(__name__)

NO_PROVIDER_MESSAGE = (
    "No API providers configured. Please set up an API provider in Sync "
    "settings."
)

PROTOCOLS = ("openai", "anthropic", "google", "ollama")

DEFAULT_BASE_URLS: Dict[str, str] = {
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com/v1",
    "google": "https://generativelanguage.googleapis.com/v1beta",
    "ollama": "http://localhost:11434",
    "deepseek": "https://api.deepseek.com/v1",
    "perplexity": "https://api.perplexity.ai",
    "openrouter": "https://openrouter.ai/api/v1",
    "cohere": "https://api.cohere.com/compatibility/v1",
}

DEFAULT_MODELS: Dict[str, str] = {
    "openai": "gpt-4o-mini",
    "anthropic": "claude-3-5-haiku-latest",
    "google": "gemini-1.5-flash",
    "ollama": "llama3.1:latest",
    "deepseek": "deepseek-chat",
    "perplexity": "sonar",
    "openrouter": "openai/gpt-4o-mini",
    "cohere": "command-r",
}


@dataclass(frozen=True)
class ProviderConfig:
    """Endpoint, credentials and protocol for one LLM provider."""

    key: str
    enabled: bool = True
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: Optional[str] = None
    protocol: str = "openai"
    tier: Optional[str] = None
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def is_usable(self) -> bool:
        """Enabled and either keyless (local ollama) or holding a key."""
        if not self.enabled:
            return False
        return self.protocol == "ollama" or bool(self.api_key)

    @property
    def endpoint(self) -> str:
        base = self.base_url or DEFAULT_BASE_URLS.get(self.key) or (
            DEFAULT_BASE_URLS[self.protocol]
        )
        return base.rstrip("/")

    @property
    def model_name(self) -> str:
        return (
            self.model
            or DEFAULT_MODELS.get(self.key)
            or DEFAULT_MODELS[self.protocol]
        )


def select_provider(
    configs: Sequence[ProviderConfig], preferred: Optional[str] = None
) -> ProviderConfig:
    """Pick the preferred usable provider, else the first usable one."""

    usable = [config for config in configs if config.is_usable]
    if preferred:
        for config in usable:
            if config.key == preferred:
                return config
    if usable:
        return usable[0]
    raise NoProviderConfigured(NO_PROVIDER_MESSAGE)


def provider_configs_from_env() -> List[ProviderConfig]:
    """Build provider configs from ``AIMODELDB_PROVIDERS`` and per-key vars.

    ``AIMODELDB_PROVIDERS=openai,ollama`` enables those keys; each reads
    ``<KEY>_API_KEY``, ``<KEY>_BASE_URL``, ``<KEY>_MODEL``,
    ``<KEY>_PROTOCOL`` and ``<KEY>_TIER``.
    """

    load_dotenv()
    configs: List[ProviderConfig] = []
    for key in env_list("AIMODELDB_PROVIDERS"):
        key = key.lower()
        prefix = key.upper().replace("-", "_")
        protocol = os.environ.get(f"{prefix}_PROTOCOL", "").strip().lower()
        if not protocol:
            protocol = key if key in PROTOCOLS else "openai"
        if protocol not in PROTOCOLS:
            _LOGGER.warning(
                "Ignoring provider %s with unknown protocol %s", key, protocol
            )
            continue
        configs.append(
            ProviderConfig(
                key=key,
                api_key=os.environ.get(f"{prefix}_API_KEY") or None,
                base_url=os.environ.get(f"{prefix}_BASE_URL") or None,
                model=os.environ.get(f"{prefix}_MODEL") or None,
                protocol=protocol,
                tier=os.environ.get(f"{prefix}_TIER") or None,
            )
        )
    return configs
