"""Demo runner: throttle a burst of simulated scroll events.

    python -m callthrottle --window-ms 100 --events 20 --interval-ms 15

Emits one log line per event the reporter actually receives. The first
event fires immediately and the last position always arrives, even though
most of the burst is coalesced.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Sequence

from callthrottle.core.config import settings
from callthrottle.core.errors import InvalidConfigurationError
from callthrottle.core.logging import configure_logging
from callthrottle.services.throttle import create_throttle

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="callthrottle",
        description="Throttle a burst of simulated scroll events and log what gets through.",
    )
    parser.add_argument(
        "--window-ms",
        type=float,
        default=settings.throttle.default_window_ms,
        help="throttle window in milliseconds (default: %(default)s)",
    )
    parser.add_argument(
        "--events",
        type=int,
        default=20,
        help="number of scroll events in the burst (default: %(default)s)",
    )
    parser.add_argument(
        "--interval-ms",
        type=float,
        default=15.0,
        help="spacing between scroll events in milliseconds (default: %(default)s)",
    )
    return parser


async def run_burst(window_ms: float, events: int, interval_ms: float) -> list[int]:
    """Feed ``events`` scroll positions through a throttle and return those delivered."""

    loop = asyncio.get_running_loop()
    started = loop.time()
    delivered: list[int] = []

    def report_position(position: int) -> None:
        delivered.append(position)
        logger.info(
            "demo.position_reported",
            extra={
                "position": position,
                "elapsed_ms": round((loop.time() - started) * 1000, 1),
            },
        )

    with create_throttle(report_position, window_ms, name="scroll_reporter") as reporter:
        for position in range(events):
            reporter(position * 10)
            await asyncio.sleep(interval_ms / 1000)
        # Let the trailing fire land before the handle is disposed.
        await asyncio.sleep(window_ms / 1000 + 0.05)

    logger.info(
        "demo.summary",
        extra={"events": events, "delivered": len(delivered), "window_ms": window_ms},
    )
    return delivered


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    configure_logging(settings.log)
    try:
        asyncio.run(run_burst(args.window_ms, args.events, args.interval_ms))
    except InvalidConfigurationError as exc:
        logger.error("demo.invalid_configuration", extra={"code": exc.code, "reason": exc.message})
        return 2
    return 0
