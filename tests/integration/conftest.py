"""
Integration test fixtures.

Each client runs the real fulfillment app over ASGI with the database-backed
unit of work and the HTTP collaborators swapped for the in-memory fakes.
Auth is mocked by overriding ``get_current_user`` with a fixed role.
"""

from typing import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from services.fulfillment_service.app.main import create_app
from services.fulfillment_service.services.collaborators import get_collaborators
from services.fulfillment_service.services.unit_of_work import get_uow


def _build_app(uow, collaborators, user: AuthUser = None):
    app = create_app()
    app.dependency_overrides[get_uow] = lambda: uow
    app.dependency_overrides[get_collaborators] = lambda: collaborators
    if user is not None:
        app.dependency_overrides[get_current_user] = lambda: user
    return app


async def _client(app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def admin_client(uow, collaborators) -> AsyncGenerator[AsyncClient, None]:
    """Client authenticated as an ADMIN user."""
    user = AuthUser(user_id="admin-1", email="admin@test.com", role="ADMIN")
    async for ac in _client(_build_app(uow, collaborators, user)):
        yield ac


@pytest_asyncio.fixture
async def customer_client(uow, collaborators) -> AsyncGenerator[AsyncClient, None]:
    """Client authenticated as a regular customer."""
    user = AuthUser(user_id="customer-1", email="customer@test.com", role="CUSTOMER")
    async for ac in _client(_build_app(uow, collaborators, user)):
        yield ac


@pytest_asyncio.fixture
async def service_client(uow, collaborators) -> AsyncGenerator[AsyncClient, None]:
    """Client calling with a peer-service token."""
    user = AuthUser(user_id="service:checkout", role="SERVICE")
    async for ac in _client(_build_app(uow, collaborators, user)):
        yield ac


@pytest_asyncio.fixture
async def webhook_client(uow, collaborators) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated client, as used by the chat bot and the carrier."""
    async for ac in _client(_build_app(uow, collaborators)):
        yield ac
