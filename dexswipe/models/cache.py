"""Provider result caches, one table per signal domain."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, UniqueConstraint
from sqlmodel import Column, Field

from .base import TimeStampedModel, utcnow


class CacheEntryBase(TimeStampedModel, table=False):
    """Freshness stamp and the derived deny verdict."""

    id: Optional[int] = Field(default=None, primary_key=True)
    scanned_at: datetime = Field(default_factory=utcnow, nullable=False)
    always_deny: bool = Field(default=False, nullable=False)
    deny_reasons: list = Field(default_factory=list, sa_type=JSON, nullable=False)


class TokenSecurityCache(CacheEntryBase, table=True):
    __tablename__ = "goplus_token_security_cache"
    __table_args__ = (UniqueConstraint("chain_id", "token_address"),)

    chain_id: str = Field(max_length=64, index=True)
    token_address: str = Field(max_length=128)
    family: str = Field(default="evm", max_length=16)
    raw: dict = Field(default_factory=dict, sa_column=Column(JSON))
    is_honeypot: Optional[bool] = None
    is_blacklisted: Optional[bool] = None
    cannot_sell_all: Optional[bool] = None
    buy_tax: Optional[float] = None
    sell_tax: Optional[float] = None
    is_proxy: Optional[bool] = None
    transfer_pausable: Optional[bool] = None
    slippage_modifiable: Optional[bool] = None
    external_call: Optional[bool] = None
    owner_change_balance: Optional[bool] = None
    hidden_owner: Optional[bool] = None
    cannot_buy: Optional[bool] = None
    trading_cooldown: Optional[bool] = None
    not_open_source: Optional[bool] = None
    is_mintable: Optional[bool] = None
    can_take_back_ownership: Optional[bool] = None


class RugpullCache(CacheEntryBase, table=True):
    __tablename__ = "goplus_rugpull_cache"
    __table_args__ = (UniqueConstraint("chain_id", "token_address"),)

    chain_id: str = Field(max_length=64, index=True)
    token_address: str = Field(max_length=128)
    raw: dict = Field(default_factory=dict, sa_column=Column(JSON))
    is_rugpull_risk: Optional[bool] = None
    risk_level: Optional[str] = Field(default=None, max_length=32)


class UrlRiskCache(CacheEntryBase, table=True):
    __tablename__ = "goplus_url_risk_cache"

    url: str = Field(max_length=2048, unique=True, index=True)
    raw_phishing: dict = Field(default_factory=dict, sa_column=Column(JSON))
    raw_dapp: dict = Field(default_factory=dict, sa_column=Column(JSON))
    is_phishing: Optional[bool] = None
    dapp_risk_level: Optional[str] = Field(default=None, max_length=32)


__all__ = ["CacheEntryBase", "RugpullCache", "TokenSecurityCache", "UrlRiskCache"]
