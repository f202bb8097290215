"""
Pytest fixtures for backend testing.
Provides an isolated database per test, a seeded two-tenant world and an
HTTP client wired to both.
"""

from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from uuid import UUID

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from entitygraph.core.config import get_settings
from entitygraph.core.registry import TypeRegistry, get_type_registry
from entitygraph.db.models import ActionOutcome, ActionRecord
from entitygraph.db.session import (
    build_engine,
    build_session_factory,
    create_schema,
    get_db_session,
)
from entitygraph.main import create_application
from tests.support import RecordFetcher, World, build_test_registry, seed_world


@pytest.fixture
def registry() -> TypeRegistry:
    return build_test_registry()


@pytest_asyncio.fixture
async def test_engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite engine so several sessions share one database."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'entitygraph.db'}")
    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(test_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session handed to the services under test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def world(
    session_factory: async_sessionmaker[AsyncSession],
    registry: TypeRegistry,
) -> World:
    async with session_factory() as session:
        return await seed_world(session, registry)


@pytest.fixture
def fetch_records(session_factory: async_sessionmaker[AsyncSession]) -> RecordFetcher:
    """Read committed action records through a fresh session, oldest first."""

    async def _fetch(
        *,
        action: str | None = None,
        outcome: ActionOutcome | None = None,
        actor_id: UUID | None = None,
    ) -> list[ActionRecord]:
        stmt = select(ActionRecord)
        if action is not None:
            stmt = stmt.where(ActionRecord.action == action)
        if outcome is not None:
            stmt = stmt.where(ActionRecord.outcome == outcome)
        if actor_id is not None:
            stmt = stmt.where(ActionRecord.actor_id == actor_id)
        async with session_factory() as session:
            result = await session.execute(
                stmt.order_by(ActionRecord.recorded_at.asc(), ActionRecord.chain_sequence.asc())
            )
            return list(result.scalars().all())

    return _fetch


@pytest.fixture
def auth_headers() -> Callable[..., dict[str, str]]:
    """Identity headers as the upstream auth layer would set them."""
    settings = get_settings()

    def _headers(actor_id: UUID, tenant_id: UUID | None = None) -> dict[str, str]:
        headers = {settings.actor_header: str(actor_id)}
        if tenant_id is not None:
            headers[settings.tenant_header] = str(tenant_id)
        return headers

    return _headers


@pytest_asyncio.fixture
async def test_client(
    session_factory: async_sessionmaker[AsyncSession],
    registry: TypeRegistry,
    world: World,
) -> AsyncGenerator[AsyncClient, None]:
    """Provide an async HTTP client for API testing."""
    get_settings.cache_clear()
    app = create_application()

    async def override_get_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_get_db_session
    app.dependency_overrides[get_type_registry] = lambda: registry

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
