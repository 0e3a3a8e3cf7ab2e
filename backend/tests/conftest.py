"""Shared test fixtures and configuration for backend tests."""
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from portalchat.auth.service import TokenService, get_token_service, set_token_service
from portalchat.config import (
    IN_MEMORY_DB,
    JWTSecrets,
    PortalChatConfig,
    Secrets,
    StorageSettings,
    set_config,
)
from portalchat.directory import User, UserDirectoryService, UserRole
from portalchat.main import app
from portalchat.messaging.broadcaster import broadcaster
from portalchat.messaging.store import MessageStore

TEST_SECRET = "test-secret-key"

SEED_USERS = [
    User(id="admin-1", name="Ada Admin", role=UserRole.ADMIN, department="Registry"),
    User(id="coord-1", name="Colin Coordinator", role=UserRole.COORDINATOR, department="CS"),
    User(id="student-1", name="Sam Student", role=UserRole.STUDENT, department="CS"),
    User(id="student-2", name="Bea Student", role=UserRole.STUDENT, department="Math"),
    User(id="alumni-1", name="Alex Alumni", role=UserRole.ALUMNI, department="CS"),
    User(id="student-9", name="Gone Student", role=UserRole.STUDENT, department="CS", active=False),
]


def make_test_config() -> PortalChatConfig:
    return PortalChatConfig(
        storage=StorageSettings(messages_db=IN_MEMORY_DB, users_db=IN_MEMORY_DB),
        secrets=Secrets(jwt=JWTSecrets(secret_key=TEST_SECRET)),
    )


@pytest.fixture(autouse=True)
def in_memory_services():
    """Point every singleton at in-memory DuckDB and a known JWT secret.

    Prevents tests from opening the file-based messages.duckdb/users.duckdb
    (DuckDB file lock contention with a running server).
    """
    set_config(make_test_config())
    MessageStore.reset_instance()
    UserDirectoryService.reset_instance()
    MessageStore.get_instance(IN_MEMORY_DB)
    UserDirectoryService.get_instance(IN_MEMORY_DB).upsert_many(SEED_USERS)
    set_token_service(TokenService(TEST_SECRET))
    broadcaster.reset()
    yield
    broadcaster.reset()
    MessageStore.reset_instance()
    UserDirectoryService.reset_instance()
    set_token_service(None)
    set_config(None)


@pytest.fixture
def api_client():
    """TestClient running the app lifespan on a single event loop.

    WebSocket sessions opened from the same client share that loop, so a
    broadcast from one session reaches the others in order.
    """
    with TestClient(app) as client:
        yield client


def token_for(user_id: str, expires_in: timedelta = None) -> str:
    return get_token_service().issue_token(user_id, expires_in=expires_in)


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {token_for(user_id)}"}


def ws_url(user_id: str) -> str:
    return f"/ws/messages?token={token_for(user_id)}"
