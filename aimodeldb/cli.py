"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

Command-line wiring: builds the catalog, sync pipeline and validation
scheduler from the environment and runs a sync pass or the local server.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from .clients.civitai_client import CivitaiClient
from .clients.hf_client import HFClient
from .clients.llm_client import LLMClient
from .clients.providers import provider_configs_from_env
from .config import DEFAULT_TIER
from .logging_config import configure_logging
from .net.rate_governor import RateGovernor, start_sweeper
from .services.scheduler import ValidationScheduler
from .services.sync import SyncPipeline
from .storage import CatalogRepository, LocalJSONModelStore
from .utils.env import (custom_nsfw_keywords, load_dotenv,
                        safety_blocking_enabled)
from .webapp import create_app

_LOGGER = logging.getLogger(__name__)


def build_services(
    store_dir: Optional[Path] = None, tier: str = DEFAULT_TIER
) -> Dict[str, Any]:
    """Wire the shared governor, catalog, sync pipeline and scheduler."""

    load_dotenv()
    keywords = custom_nsfw_keywords()
    governor = RateGovernor()
    repository = CatalogRepository(
        LocalJSONModelStore(store_dir), custom_keywords=keywords
    )
    repository.load_on_start()

    pipeline = SyncPipeline(
        repository,
        [HFClient(governor=governor), CivitaiClient(governor=governor)],
        governor=governor,
        safety_blocking=safety_blocking_enabled(),
        custom_keywords=keywords,
    )
    llm = LLMClient()
    scheduler = ValidationScheduler(
        repository,
        llm.enrich,
        provider_configs_from_env,
        governor=governor,
        tier=tier,
    )
    return {
        "GOVERNOR": governor,
        "REPOSITORY": repository,
        "SYNC_PIPELINE": pipeline,
        "SCHEDULER": scheduler,
    }


def build_arg_parser() -> argparse.ArgumentParser:
    argument_parser = argparse.ArgumentParser(
        description=(
            "AIModelDB: ingest, screen and validate AI model metadata."
        )
    )
    argument_parser.add_argument(
        "--store-dir",
        type=Path,
        default=None,
        help="Directory holding models.json and metadata.json.",
    )
    argument_parser.add_argument(
        "--tier",
        default=DEFAULT_TIER,
        help="Provider tier used to pace validation calls.",
    )
    commands = argument_parser.add_subparsers(dest="command", required=True)

    sync = commands.add_parser("sync", help="Run one sync pass and exit.")
    sync.add_argument("--search", default=None)
    sync.add_argument("--limit", type=int, default=100)

    serve = commands.add_parser("serve", help="Run the local proxy and API.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8787)
    return argument_parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    configure_logging()
    argument_parser = build_arg_parser()
    parsed_args = argument_parser.parse_args(argv)

    services = build_services(parsed_args.store_dir, parsed_args.tier)
    if parsed_args.command == "sync":
        options: Dict[str, Dict[str, Any]] = {
            source: {"search": parsed_args.search, "limit": parsed_args.limit}
            for source in (HFClient.name, CivitaiClient.name)
        }
        summary = services["SYNC_PIPELINE"].run(options)
        sys.stdout.write(json.dumps(summary.to_dict(), indent=2) + "\n")
        return 1 if summary.failed and not summary.found else 0

    sweeper = start_sweeper(services["GOVERNOR"])
    app = create_app(services)
    _LOGGER.info(
        "Serving on http://%s:%d", parsed_args.host, parsed_args.port
    )
    try:
        app.run(host=parsed_args.host, port=parsed_args.port)
    finally:
        sweeper.stop(timeout=1.0)
        services["SCHEDULER"].shutdown(timeout=1.0)
    return 0


if __name__ == "__main__":
    sys.exit(main())
