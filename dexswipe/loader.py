"""Startup and shutdown of the shared services."""

from __future__ import annotations

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine

from .context import ServiceContext
from .middlewares.db import init_db
from .utils.cache import configure_cache


async def on_startup(ctx: ServiceContext, bind: AsyncEngine | None = None) -> None:
    logger.info(
        "DexSwipe starting in {env} (plan {tier}, {budget} CU per run)",
        env=ctx.settings.environment,
        tier=ctx.plan.tier,
        budget=ctx.plan.cu_budget_per_run,
    )
    configure_cache(ctx.settings.cache)
    await init_db(bind)
    await ctx.http.start()
    supported = [c for c in ctx.registry.chain_ids if ctx.registry.is_security_supported(c)]
    logger.debug("Security-supported chains: {chains}", chains=", ".join(supported))


async def on_shutdown(ctx: ServiceContext) -> None:
    await ctx.http.close()
    logger.info("DexSwipe stopped")


__all__ = ["on_shutdown", "on_startup"]
