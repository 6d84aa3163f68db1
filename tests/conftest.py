"""
Shared fixtures: temporary SQLite database, settings, chain registry.
"""

from __future__ import annotations

import asyncio

import pytest

from config.settings import AppSettings, DatabaseSettings
from dexswipe.context import ServiceContext, build_context
from dexswipe.middlewares.db import build_engine, build_session_maker, init_db
from dexswipe.services.budget import BudgetGovernor, CostTable
from dexswipe.services.chains import ChainRegistry
from dexswipe.services.plan import load_plan_config
from dexswipe.services.providers.http_client import ProviderClient
from dexswipe.utils.cache import clear_cache
from fakes import FakeSession


@pytest.fixture(autouse=True)
def fresh_cache():
    """Provider memos never leak from one test into the next."""

    asyncio.run(clear_cache())
    yield
    asyncio.run(clear_cache())


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(_env_file=None)


@pytest.fixture
def registry(settings) -> ChainRegistry:
    return ChainRegistry(settings.chains)


@pytest.fixture
def governor(settings) -> BudgetGovernor:
    return BudgetGovernor(load_plan_config(settings.plan), CostTable(settings.plan.cu_costs))


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(DatabaseSettings(dsn=f"sqlite+aiosqlite:///{tmp_path / 'dexswipe.db'}"))
    asyncio.run(init_db(engine))
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture
def session_maker(engine):
    return build_session_maker(engine)


@pytest.fixture
def make_context(settings, session_maker):
    """Service context over the test database; keyword args replace settings sections."""

    def factory(**sections) -> ServiceContext:
        http = ProviderClient(user_agent="dexswipe-tests", session=FakeSession([]))
        return build_context(settings.model_copy(update=sections), session_maker, http=http)

    return factory
