"""Market snapshot of a discovered token and per-client read state."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from .base import TimeStampedModel


class Token(TimeStampedModel, table=True):
    """Latest DexScreener view of a token (best pair by liquidity)."""

    __tablename__ = "tokens"
    __table_args__ = (UniqueConstraint("chain_id", "token_address"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    token_id: str = Field(max_length=200, unique=True, index=True)
    chain_id: str = Field(max_length=64, index=True)
    token_address: str = Field(max_length=128)
    name: Optional[str] = Field(default=None, max_length=256)
    symbol: Optional[str] = Field(default=None, max_length=64)
    logo_url: Optional[str] = Field(default=None, max_length=1024)
    website_url: Optional[str] = Field(default=None, max_length=2048)
    description: Optional[str] = None
    boost_amount: Optional[float] = None
    pair_address: Optional[str] = Field(default=None, max_length=128)
    price_usd: Optional[float] = None
    liquidity_usd: Optional[float] = None
    volume_24h: Optional[float] = None
    fdv: Optional[float] = None
    market_cap: Optional[float] = None
    price_change_5m: Optional[float] = None
    price_change_15m: Optional[float] = None
    price_change_1h: Optional[float] = None
    buys_24h: Optional[int] = None
    sells_24h: Optional[int] = None
    pair_created_at: Optional[datetime] = None
    last_fetched_at: Optional[datetime] = None


class SeenToken(TimeStampedModel, table=True):
    __tablename__ = "seen_tokens"
    __table_args__ = (UniqueConstraint("client_id", "token_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    client_id: str = Field(max_length=128, index=True)
    token_id: str = Field(max_length=200)


class WishlistItem(TimeStampedModel, table=True):
    __tablename__ = "wishlist"
    __table_args__ = (UniqueConstraint("client_id", "token_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    client_id: str = Field(max_length=128, index=True)
    token_id: str = Field(max_length=200)
    captured_price: Optional[float] = None
    captured_at: Optional[datetime] = None


__all__ = ["SeenToken", "Token", "WishlistItem"]
