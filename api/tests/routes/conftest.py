"""Route test configuration.

Disables the rate limiter and provides signed-in clients. Route handlers
open their own sessions, so seeded rows must be committed before a request.
"""

from collections.abc import AsyncGenerator
from unittest.mock import patch

import pytest
from fastapi import FastAPI
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from models import User
from tests.conftest import make_client
from tests.factories import AdminUserFactory, UserFactory, create_async


@pytest.fixture(autouse=True)
def _disable_rate_limiter():
    """Disable slowapi rate limiting so route handlers can be called directly."""
    with patch("core.ratelimit.limiter.enabled", False):
        yield


@pytest.fixture
async def admin_user(db_session: AsyncSession) -> User:
    user = await create_async(AdminUserFactory, db_session, name="Admin BITCAN")
    await db_session.commit()
    return user


@pytest.fixture
async def student_user(db_session: AsyncSession) -> User:
    user = await create_async(UserFactory, db_session, name="Ana Pérez")
    await db_session.commit()
    return user


@pytest.fixture
async def admin_client(app: FastAPI, admin_user: User) -> AsyncGenerator[AsyncClient]:
    async with make_client(app, user_id=admin_user.id, role="admin") as ac:
        yield ac


@pytest.fixture
async def student_client(
    app: FastAPI, student_user: User
) -> AsyncGenerator[AsyncClient]:
    async with make_client(app, user_id=student_user.id, role="student") as ac:
        yield ac
