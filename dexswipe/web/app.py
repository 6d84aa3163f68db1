"""FastAPI surface: the swipe feed, the wishlist read and a health probe."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Literal

from fastapi import Depends, FastAPI, Header, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlmodel.ext.asyncio.session import AsyncSession

from config.settings import get_settings
from dexswipe.context import ServiceContext, get_context
from dexswipe.loader import on_shutdown, on_startup
from dexswipe.middlewares import ErrorsMiddleware, get_db_session
from dexswipe.services.feed import FeedAggregator, FeedQuery

settings = get_settings()


def get_service_context() -> ServiceContext:
    return get_context()


def get_feed_aggregator(ctx: ServiceContext = Depends(get_service_context)) -> FeedAggregator:
    return ctx.feed


def get_client_id(x_client_id: str | None = Header(None, alias="x-client-id")) -> str:
    client_id = (x_client_id or "").strip()
    if not client_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="x-client-id header is required")
    return client_id


def _split_chains(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(dict.fromkeys(part.strip().lower() for part in raw.split(",") if part.strip()))


@asynccontextmanager
async def lifespan(app: FastAPI):
    ctx = get_context()
    await on_startup(ctx)
    yield
    await on_shutdown(ctx)


app = FastAPI(title="DexSwipe API", lifespan=lifespan)
app.add_middleware(ErrorsMiddleware)


@app.get("/api/feed")
async def api_feed(
    format: Literal["full", "min"] = "full",
    limit: int = Query(settings.feed.default_limit, ge=1, le=settings.feed.max_limit),
    cursor: str | None = None,
    chains: str | None = Query(None, description="Comma-separated chain ids"),
    min_liquidity_usd: float | None = Query(None, ge=0),
    min_volume_24h: float | None = Query(None, ge=0),
    min_fdv: float | None = Query(None, ge=0),
    include_risky: bool = False,
    client_id: str = Depends(get_client_id),
    session: AsyncSession = Depends(get_db_session),
    feed: FeedAggregator = Depends(get_feed_aggregator),
):
    query = FeedQuery(
        limit=limit,
        cursor=cursor or None,
        chains=_split_chains(chains),
        min_liquidity_usd=min_liquidity_usd,
        min_volume_24h=min_volume_24h,
        min_fdv=min_fdv,
        include_risky=include_risky,
    )
    page = await feed.get_feed(session, client_id, query)
    if format == "min":
        return JSONResponse(content=page.as_min(), headers={"x-next-cursor": page.next_cursor or ""})
    return page.as_full()


@app.get("/api/wishlist")
async def api_wishlist(
    limit: int = Query(settings.feed.wishlist_default_limit, ge=1, le=settings.feed.wishlist_max_limit),
    client_id: str = Depends(get_client_id),
    session: AsyncSession = Depends(get_db_session),
    feed: FeedAggregator = Depends(get_feed_aggregator),
) -> dict:
    return await feed.get_wishlist(session, client_id, limit)


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok", "service": "dexswipe", "environment": settings.environment}


__all__ = ["app", "get_client_id", "get_db_session", "get_feed_aggregator", "get_service_context"]
