"""
CLI entry point for the scraper service.

Provides commands to run the service, check that its collaborators are
reachable and inspect the configured sources.
"""

import argparse
import asyncio
import logging
import sys
from typing import Any, Dict, Optional

from .config.settings import load_settings
from .core.exceptions import ConfigError, QueueError
from .service import ScraperService, create_broker, load_seed_sources
from .sources.probe import HTTPLivenessProbe
from .sources.registry import SourceRegistry
from .utils.logging import setup_logger


async def run_service(
    environment: Optional[str] = None,
    config_file: Optional[str] = None,
    config_overrides: Optional[Dict[str, Any]] = None,
) -> int:
    """
    Run the scraper service until interrupted.

    Returns:
        Process exit code
    """
    logger = logging.getLogger(__name__)

    service = None
    try:
        settings = load_settings(environment=environment, config_file=config_file, **(config_overrides or {}))
        setup_logger("mediawatch.scraper", level=settings.log_level, json_logs=settings.json_logs)

        logger.info(f"Starting scraper service with environment: {settings.environment}")
        logger.info(
            f"Scraper configuration: backend={settings.queue_backend}, "
            f"max_concurrent={settings.max_concurrent_scrapes}, "
            f"scheduling_interval={settings.scheduling_interval_seconds}s"
        )

        service = ScraperService(settings)
        service.setup_signal_handlers()
        await service.run()
        return 0

    except ConfigError as e:
        logger.error(f"Configuration error: {e}", extra={"errors": e.errors})
        return 1
    except QueueError as e:
        logger.error(f"Queue broker error: {e}")
        return 1
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    finally:
        if service is not None:
            await service.shutdown()


async def health_check(environment: Optional[str] = None, config_file: Optional[str] = None) -> int:
    """
    One-shot check of configuration, seed sources and queue broker.

    Returns:
        Process exit code
    """
    checks: Dict[str, str] = {}
    healthy = True

    try:
        settings = load_settings(environment=environment, config_file=config_file)
        checks["config"] = "ok"
    except ConfigError as e:
        print(f"Configuration: FAILED ({e})")
        return 1

    try:
        seeds = load_seed_sources(settings)
        SourceRegistry(HTTPLivenessProbe()).load(seeds)
        checks["sources"] = f"ok ({len(seeds)} sources)"
    except ConfigError as e:
        checks["sources"] = f"FAILED ({e})"
        healthy = False

    broker = create_broker(settings)
    try:
        await broker.ping()
        checks["queue"] = f"ok ({settings.queue_backend})"
    except QueueError as e:
        checks["queue"] = f"FAILED ({e})"
        healthy = False
    finally:
        await broker.close()

    print("Scraper Health Check Results:")
    print(f"Overall Status: {'healthy' if healthy else 'unhealthy'}")
    for component, status in checks.items():
        print(f"  {component}: {status}")

    return 0 if healthy else 1


async def show_sources(environment: Optional[str] = None, config_file: Optional[str] = None) -> int:
    """
    Load the seed sources, run one validation sweep and print the result.

    Returns:
        Process exit code
    """
    try:
        settings = load_settings(environment=environment, config_file=config_file)
        seeds = load_seed_sources(settings)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 1

    probe = HTTPLivenessProbe(settings.probe_timeout_seconds)
    registry = SourceRegistry(probe)
    try:
        registry.load(seeds)
        report = await registry.validate_sweep()
    except ConfigError as e:
        print(f"Invalid sources: {e}")
        return 1
    finally:
        await probe.close()

    print(f"Sources ({len(registry)} registered, {len(registry.active_sources())} active):")
    for source in registry.all_sources():
        state = "active" if source.active else "inactive"
        print(f"  {source.id:<24} {source.content_type.value:<6} {state:<9} {source.url}")

    if report.deactivated:
        print(f"\nDeactivated: {', '.join(report.deactivated)}")
    return 0


def main():
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        description="mediawatch crawl orchestration service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m mediawatch.scraper run --environment dev
  python -m mediawatch.scraper run --max-concurrent 4 --log-level DEBUG
  python -m mediawatch.scraper health --environment prod
  python -m mediawatch.scraper sources --config ./sources-config.yaml
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    run_parser = subparsers.add_parser("run", help="Run the scraper service")
    run_parser.add_argument("--environment", "-e", help="Environment (dev/test/staging/prod)")
    run_parser.add_argument("--config", help="Path to a YAML config file")
    run_parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Override logging level"
    )
    run_parser.add_argument("--max-concurrent", type=int, help="Override max concurrent scrapes")
    run_parser.add_argument("--sources-file", help="Override the seed sources file")

    health_parser = subparsers.add_parser("health", help="Check configuration, sources and queue broker")
    health_parser.add_argument("--environment", "-e", help="Environment")
    health_parser.add_argument("--config", help="Path to a YAML config file")

    sources_parser = subparsers.add_parser("sources", help="Validate and list the seed sources")
    sources_parser.add_argument("--environment", "-e", help="Environment")
    sources_parser.add_argument("--config", help="Path to a YAML config file")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    config_overrides: Dict[str, Any] = {}
    if getattr(args, "log_level", None):
        config_overrides["log_level"] = args.log_level
    if getattr(args, "max_concurrent", None):
        config_overrides["max_concurrent_scrapes"] = args.max_concurrent
    if getattr(args, "sources_file", None):
        config_overrides["sources_file"] = args.sources_file

    try:
        if args.command == "run":
            exit_code = asyncio.run(
                run_service(environment=args.environment, config_file=args.config, config_overrides=config_overrides)
            )
        elif args.command == "health":
            exit_code = asyncio.run(health_check(environment=args.environment, config_file=args.config))
        elif args.command == "sources":
            exit_code = asyncio.run(show_sources(environment=args.environment, config_file=args.config))
        else:
            print(f"Unknown command: {args.command}")
            exit_code = 1
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        exit_code = 0

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
