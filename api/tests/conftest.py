"""Pytest configuration and shared fixtures.

This module provides:
- In-memory SQLite database (aiosqlite + StaticPool) per test
- Async session fixtures for repository/service tests
- A fake PDF renderer (no browser is launched in tests)
- FastAPI test client with signed-session authentication helpers
"""

# Set environment variables BEFORE any imports that trigger Settings validation
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SESSION_SECRET_KEY", "test_session_secret_key_for_testing")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("APP_URL", "https://cursos.example.org")

import json
from base64 import b64encode
from collections.abc import AsyncGenerator, Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from itsdangerous import TimestampSigner
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from core.config import Settings, clear_settings_cache, get_settings
from core.database import Base, configure_sqlite_engine
from rendering.pdf_renderer import PDFRenderer
from rendering.template_engine import TemplateEngine
from schemas import BrowserPoolStatus

FAKE_PDF = b"%PDF-1.4\n% fake certificate\n%%EOF"
FAKE_PNG = b"\x89PNG\r\n\x1a\nfake"

# =============================================================================
# Settings
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    return get_settings()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None]:
    """Reset settings cache before each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine]:
    """Fresh in-memory database with the full schema.

    StaticPool keeps the single connection alive so every session in the
    test sees the same database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    configure_sqlite_engine(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Session for repository/service tests.

    Services only flush; tests that hand data to route handlers (which use
    their own sessions) must commit explicitly.
    """
    session = session_maker()
    try:
        yield session
    finally:
        await session.rollback()
        await session.close()


# =============================================================================
# Rendering Fixtures
# =============================================================================


@pytest.fixture
def template_engine() -> TemplateEngine:
    return TemplateEngine(locale="es_PY")


@pytest.fixture
def fake_pdf_renderer() -> MagicMock:
    """Stands in for the Chromium-backed renderer."""
    renderer = MagicMock(spec=PDFRenderer)
    renderer.generate_pdf = AsyncMock(return_value=FAKE_PDF)
    renderer.generate_screenshot = AsyncMock(return_value=FAKE_PNG)
    renderer.close = AsyncMock()
    renderer.status.return_value = BrowserPoolStatus(size=2, launched=0, in_use=0)
    return renderer


# =============================================================================
# FastAPI Test Client Fixtures
# =============================================================================


def session_cookie(data: dict) -> str:
    """Build a cookie value that Starlette's SessionMiddleware accepts."""
    secret = get_settings().session_secret_key
    payload = b64encode(json.dumps(data).encode("utf-8"))
    return TimestampSigner(secret).sign(payload).decode("utf-8")


@pytest_asyncio.fixture
async def app(
    test_engine: AsyncEngine,
    session_maker: async_sessionmaker[AsyncSession],
    template_engine: TemplateEngine,
    fake_pdf_renderer: MagicMock,
) -> AsyncGenerator[FastAPI]:
    """FastAPI app wired to the test database and the fake renderer.

    ASGITransport does not run the lifespan, so state is set here.
    """
    from main import app as fastapi_app

    fastapi_app.state.engine = test_engine
    fastapi_app.state.session_maker = session_maker
    fastapi_app.state.template_engine = template_engine
    fastapi_app.state.pdf_renderer = fake_pdf_renderer
    fastapi_app.state.init_done = True
    fastapi_app.state.init_error = None

    yield fastapi_app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Unauthenticated client."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


def make_client(app: FastAPI, *, user_id: int, role: str) -> AsyncClient:
    return AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        cookies={"session": session_cookie({"user_id": user_id, "role": role})},
    )
