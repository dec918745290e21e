"""DLOB Publisher - Entry Point

Usage:
    python -m dlob_publisher [--config PATH] [--log-level LEVEL] [COMMAND]

Commands:
    run     - Start publishing order book snapshots (default)
    health  - Check health status of a running publisher
    version - Show version

Examples:
    python -m dlob_publisher
    python -m dlob_publisher --config config/production.toml
    python -m dlob_publisher --log-level DEBUG
    python -m dlob_publisher health

Exit codes:
    0 - clean shutdown
    1 - kill switch tripped, or startup failed
"""

import argparse
import asyncio
import sys
from pathlib import Path

from dlob_publisher import __version__


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="dlob-publisher",
        description="Publishes L2 order book snapshots to Redis",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"dlob-publisher {__version__}",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Path to configuration file (TOML)",
    )

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Log level",
    )

    parser.add_argument(
        "--health-port",
        type=int,
        default=None,
        help="Port of the running publisher's health endpoint (health command)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")
    subparsers.add_parser("run", help="Start publishing")
    subparsers.add_parser("health", help="Check health status")
    subparsers.add_parser("version", help="Show version")

    return parser.parse_args(argv)


def find_config_file(specified: Path | None) -> Path | None:
    """Find configuration file."""
    if specified and specified.exists():
        return specified

    search_paths = [
        Path("config/default.toml"),
        Path("config/production.toml"),
        Path("dlob_publisher.toml"),
        Path("/etc/dlob_publisher/dlob_publisher.toml"),
    ]

    for path in search_paths:
        if path.exists():
            return path

    return None


async def run_publisher(args: argparse.Namespace) -> int:
    """Run the publisher until shutdown or kill switch."""
    import structlog

    from dlob_publisher.app import DLOBPublisherApp
    from dlob_publisher.core.config import ConfigManager
    from dlob_publisher.core.retry import PublisherError

    config_path = find_config_file(args.config)
    config = ConfigManager(config_path) if config_path else ConfigManager()

    if args.log_level is not None:
        config.set("service.log_level", args.log_level)

    try:
        app = DLOBPublisherApp(config)
    except PublisherError as e:
        structlog.get_logger().error("startup_failed", error=str(e))
        return 1

    log = structlog.get_logger()
    log.info(
        "config_loaded",
        config=str(config_path) if config_path else "defaults",
    )

    try:
        return await app.run_forever()
    except KeyboardInterrupt:
        log.info("shutdown_requested")
        await app.stop()
        return 0
    except Exception as e:
        log.error("fatal_error", error=str(e), error_type=type(e).__name__)
        return 1


async def check_health(port: int) -> int:
    """Query the health endpoint of a running publisher."""
    import httpx

    url = f"http://localhost:{port}/health"

    try:
        async with httpx.AsyncClient() as client:
            response = await client.get(url, timeout=5.0)

        data = response.json()
        print(f"Status: {data.get('status', 'unknown')}")
        print(f"Redis connected: {data.get('redis_connected', False)}")
        print(f"Markets: {data.get('markets', 0)}")
        print(f"Uptime: {data.get('uptime_seconds', 0):.0f}s")
        for issue in data.get("issues", []):
            print(f"  issue: {issue}")

        return 0 if data.get("status") == "healthy" else 1

    except httpx.ConnectError:
        print("Cannot connect to dlob-publisher (is it running?)")
        return 1
    except Exception as e:
        print(f"Health check error: {e}")
        return 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    if args.command == "version":
        print(f"dlob-publisher {__version__}")
        return 0

    if args.command == "health":
        from dlob_publisher.services.health import DEFAULT_HEALTH_PORT

        return asyncio.run(check_health(args.health_port or DEFAULT_HEALTH_PORT))

    return asyncio.run(run_publisher(args))


if __name__ == "__main__":
    sys.exit(main())
