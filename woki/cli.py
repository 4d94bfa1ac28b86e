#!/usr/bin/env python3
"""Command line entry point: scrape the tail of every running container.

Usage:
    python -m woki                       # last 10 lines, 2s per container
    python -m woki --tail 50 --timeout 5
    python -m woki --mode sequential
    python -m woki --docker-host tcp://10.0.0.5:2375
"""

import argparse
import asyncio
import sys
from typing import Optional

import structlog
from pydantic import ValidationError

from .config import ScraperConfig, load_config
from .errors import DirectoryUnreachable
from .fetcher import BoundedFetcher
from .logging_setup import configure_logging
from .models import ScrapeReport
from .orchestrator import ScrapeOrchestrator
from .reporter import render_report
from .runtime.docker import docker_runtime

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="woki", description="Simple container log scraper")
    parser.add_argument("--config", help="YAML config file (default: $WOKI_CONFIG or config/woki.yaml)")
    parser.add_argument("--docker-host", help="Docker endpoint, unix:///path or tcp://host:port")
    parser.add_argument("--tail", type=int, dest="tail_lines", help="Lines to fetch per container")
    parser.add_argument("--timeout", type=float, dest="fetch_timeout_seconds", help="Seconds allowed per container")
    parser.add_argument("--mode", choices=["sequential", "concurrent"], help="Fetch scheduling")
    parser.add_argument("--concurrency", type=int, help="Maximum concurrent fetches")
    parser.add_argument(
        "--no-timestamps", action="store_false", dest="timestamps", default=None, help="Omit per-line timestamps"
    )
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    return parser


def resolve_config(args: argparse.Namespace) -> ScraperConfig:
    """Loaded config with command line flags layered on top."""
    config = load_config(args.config)
    overrides = {
        key: value
        for key, value in vars(args).items()
        if key != "config" and value is not None
    }
    return ScraperConfig(**{**config.model_dump(), **overrides})


def run_scrape(orchestrator: ScrapeOrchestrator, config: ScraperConfig) -> ScrapeReport:
    if config.mode == "sequential":
        return orchestrator.scrape(config.fetch_timeout_seconds, config.tail_lines, config.timestamps)
    return asyncio.run(
        orchestrator.scrape_async(config.fetch_timeout_seconds, config.tail_lines, config.timestamps)
    )


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = resolve_config(args)
        configure_logging(config.log_level)
        directory, source = docker_runtime(config.docker_host)
    except (ValidationError, ValueError, OSError) as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return EXIT_ERROR

    orchestrator = ScrapeOrchestrator(
        directory,
        source,
        fetcher=BoundedFetcher(config.chunk_size),
        concurrency=config.concurrency,
    )

    try:
        report = run_scrape(orchestrator, config)
    except DirectoryUnreachable as e:
        print(f"Error listing containers: {e}", file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        logger.warning("Scrape interrupted")
        if orchestrator.last_report is not None:
            render_report(orchestrator.last_report)
        return EXIT_INTERRUPTED

    render_report(report)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
