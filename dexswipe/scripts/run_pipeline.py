"""One pass of the pipeline: discovery, market refresh, security and quality scans.

Meant to be triggered by an external scheduler; every stage is safe to run
concurrently with another invocation because jobs are claimed atomically.
"""

from __future__ import annotations

import argparse
import asyncio

from loguru import logger

from config.settings import get_settings
from dexswipe.context import get_context
from dexswipe.loader import on_shutdown, on_startup
from dexswipe.logging_config import setup_logging

STAGES = ("discovery", "market", "security", "quality")


async def run(stages: tuple[str, ...]) -> dict[str, dict]:
    ctx = get_context()
    await on_startup(ctx)
    reports: dict[str, dict] = {}
    try:
        for stage in stages:
            if stage == "discovery":
                reports[stage] = (await ctx.discovery().run()).as_dict()
            elif stage == "market":
                reports[stage] = (await ctx.market_worker().run()).as_dict()
            elif stage == "security":
                reports[stage] = (await ctx.security_worker().run()).as_dict()
            elif stage == "quality":
                reports[stage] = (await ctx.quality_worker().run()).as_dict()
    finally:
        await on_shutdown(ctx)
    return reports


def _parse_stages(raw: str) -> tuple[str, ...]:
    stages = tuple(part.strip() for part in raw.split(",") if part.strip())
    unknown = sorted(set(stages) - set(STAGES))
    if unknown:
        raise argparse.ArgumentTypeError(f"unknown stage(s): {', '.join(unknown)}")
    return stages


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one DexSwipe pipeline pass")
    parser.add_argument(
        "--stages",
        type=_parse_stages,
        default=STAGES,
        help="Comma-separated subset of: " + ", ".join(STAGES),
    )
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(json=settings.log_json, level="INFO" if settings.is_production else "DEBUG")
    reports = asyncio.run(run(args.stages))
    for stage, report in reports.items():
        logger.info("{stage}: {report}", stage=stage, report=report)


if __name__ == "__main__":
    main()
