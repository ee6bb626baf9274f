"""altsignal CLI entrypoint.

Run a single collection, the monitoring loop, the API, or all of them::

    python -m altsignal.main --collect AAPL
    python -m altsignal.main --monitor --once
    python -m altsignal.main --server
    python -m altsignal.main               # monitor + server
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from altsignal import __version__
from altsignal.config import get_settings
from altsignal.pipeline import Pipeline, build_pipeline
from altsignal.utils import setup_logging, time_ago

logger = logging.getLogger("altsignal")

BANNER = rf"""
        _ _       _                   _
   __ _| | |_ ___(_) __ _ _ __   __ _| |
  / _` | | __/ __| |/ _` | '_ \ / _` | |
 | (_| | | |_\__ \ | (_| | | | | (_| | |
  \__,_|_|\__|___/_|\__, |_| |_|\__,_|_|  v{__version__}
                    |___/
  Alternative-data signals and alerting
"""


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="altsignal",
        description="altsignal: alternative-data collection, signal fusion and alerting",
    )
    group = parser.add_argument_group("components")
    group.add_argument("--collect", metavar="SYMBOL", help="Run one collection cycle for SYMBOL and print the fused signal")
    group.add_argument("--monitor", action="store_true", help="Run the alert monitoring loop")
    group.add_argument("--server", action="store_true", help="Run the FastAPI server")

    parser.add_argument("--mock", action="store_true", help="Enable mock mode (no real API calls)")
    parser.add_argument("--once", action="store_true", help="Run a single monitoring tick then exit")
    return parser


def _log_status(pipeline: Pipeline) -> None:
    status = pipeline.registry.get_status()
    for entry in status["collectors"]:
        last = entry["last_update"]
        logger.info(
            "  %-12s %-8s health=%.2f last=%s",
            entry["name"], entry["status"], entry["health_score"], time_ago(last) if last else "never",
        )
    if status["dormant"]:
        logger.info("  dormant: %s", ", ".join(status["dormant"]))
    stats = pipeline.engine.get_stats()
    logger.info(
        "Engine: %d rules (%d enabled), %d active alerts, queue=%s",
        stats["rules"], stats["enabled_rules"], stats["active_alerts"], stats["queue"],
    )


async def _collect(pipeline: Pipeline, symbol: str) -> None:
    signal = await pipeline.registry.collect_all(symbol.upper())
    print(json.dumps(signal.to_dict(), indent=2, default=str))
    _log_status(pipeline)


async def _run(args: argparse.Namespace) -> None:
    settings = get_settings()
    mock = args.mock or settings.mock_mode
    if args.mock:
        settings.__dict__["mock_mode"] = True

    components: list[str] = []
    if args.monitor:
        components.append("monitor")
    if args.server:
        components.append("server")
    if not components and not args.collect:
        components = ["monitor", "server"]

    # mock single passes stay in memory
    persist = not (mock and (args.once or args.collect))
    pipeline = build_pipeline(settings, mock=mock, persist=persist)

    if args.collect:
        await pipeline.engine.load()
        try:
            await _collect(pipeline, args.collect)
        finally:
            await pipeline.close()
        return

    logger.info("Starting components: %s", ", ".join(components))

    # ── Single pass ────────────────────────────────────────────────────

    if args.once:
        await pipeline.start(collect=False)
        try:
            for symbol in settings.watchlist:
                await pipeline.registry.collect_all(symbol)
            summary = await pipeline.driver.tick()
            await pipeline.queue.wait_idle(timeout=settings.tick_timeout_seconds)
            logger.info("Single tick: %s", summary)
            _log_status(pipeline)
        finally:
            await pipeline.close()
        return

    # ── Long-running ───────────────────────────────────────────────────

    await pipeline.start()
    background_tasks: list[asyncio.Task] = []
    if "monitor" in components:
        background_tasks.append(asyncio.create_task(pipeline.driver.run(), name="monitor-driver"))

    try:
        if "server" in components:
            import uvicorn
            from altsignal.api.app import create_app

            app = create_app(pipeline)
            config = uvicorn.Config(
                app,
                host=settings.api_host,
                port=settings.api_port,
                log_level=settings.log_level.lower(),
            )
            server = uvicorn.Server(config)
            await server.serve()
        else:
            logger.info("Monitoring %s; press Ctrl+C to stop", ", ".join(settings.watchlist))
            await asyncio.gather(*background_tasks)
    except asyncio.CancelledError:
        logger.info("Shutdown requested")
    finally:
        await pipeline.close()
        await asyncio.gather(*background_tasks, return_exceptions=True)


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(settings.log_level)

    print(BANNER, file=sys.stderr)

    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


if __name__ == "__main__":
    main()
