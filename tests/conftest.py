import os

os.environ["JWT_SECRET_KEY"] = "test-secret-key-with-enough-bytes-for-hs256"
os.environ["REDIS_URL"] = ""
os.environ["MONGODB_DB"] = "pintuchat_test"

import asyncio

import httpx
import pytest
import pytest_asyncio
from bson import ObjectId
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient
import uvicorn

from pintuchat.client.api import MessagingApiClient
from pintuchat.config import get_settings
from pintuchat.database import connection
from pintuchat.main import app
from pintuchat.repositories.conversation_repository import ConversationRepository
from pintuchat.repositories.message_repository import MessageRepository
from pintuchat.repositories.user_repository import UserRepository
from pintuchat.routers.chat import manager
from pintuchat.services.chat_service import ChatService
from pintuchat.services.realtime_dispatcher import RealtimeDispatcher
from pintuchat.utils.realtime_bus import NoopBus
from pintuchat.utils.security import create_access_token
from pintuchat.utils.websocket_manager import ConnectionManager


@pytest.fixture
def mongo_client():
    return AsyncMongoMockClient()


@pytest.fixture
def db(mongo_client):
    return mongo_client[get_settings().mongodb_db]


@pytest_asyncio.fixture
async def users(db):
    """Ids of a job seeker, a recruiter, a second recruiter and a blocked account."""
    docs = {
        "seeker": {"email": "sari@pintukerja.id", "full_name": "Sari Wulandari", "role": "job_seeker"},
        "recruiter": {"email": "budi@majujaya.co.id", "full_name": "Budi Santoso", "role": "recruiter"},
        "other": {"email": "hr@nusantara.co.id", "full_name": "Dewi Lestari", "role": "recruiter"},
        "blocked": {"email": "spam@pintukerja.id", "full_name": "Spammer", "role": "job_seeker", "is_blocked": True},
    }
    ids = {}
    for name, doc in docs.items():
        oid = ObjectId()
        await db["users"].insert_one({"_id": oid, **doc})
        ids[name] = str(oid)
    return ids


@pytest.fixture
def message_repo(db):
    return MessageRepository(db, max_length=get_settings().message_max_length)


@pytest.fixture
def registry():
    return ConnectionManager()


@pytest.fixture
def chat_service(db, message_repo, registry):
    user_repo = UserRepository(db)
    dispatcher = RealtimeDispatcher(registry, NoopBus())
    return ChatService(message_repo, ConversationRepository(message_repo, user_repo), user_repo, dispatcher)


def auth_headers(user_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


class InMemoryMotorClient:

    def __init__(self, database) -> None:
        self._database = database

    def __getitem__(self, name):
        return self._database

    def close(self) -> None:
        pass


@pytest.fixture
def client(db, monkeypatch):
    # the lifespan connects through this name; hand it the in-memory database instead
    monkeypatch.setattr(connection, "AsyncIOMotorClient", lambda *args, **kwargs: InMemoryMotorClient(db))
    with TestClient(app) as test_client:
        yield test_client


@pytest_asyncio.fixture
async def api_for(db, monkeypatch):
    """Build MessagingApiClients that talk to the app in-process over httpx."""
    monkeypatch.setattr(connection, "_db", db)
    opened = []

    def make(user_id: str) -> MessagingApiClient:
        http = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app),
            base_url="http://testserver",
            headers=auth_headers(user_id),
        )
        opened.append(http)
        return MessagingApiClient(http)

    yield make
    for http in opened:
        await http.aclose()
    await manager.close_all()


@pytest_asyncio.fixture
async def live_server(db, monkeypatch):
    """Serve the app on a real socket for clients that speak WebSocket themselves."""
    monkeypatch.setattr(connection, "_db", db)
    config = uvicorn.Config(app, host="127.0.0.1", port=0, lifespan="off", log_level="warning", timeout_graceful_shutdown=2)
    server = uvicorn.Server(config)
    task = asyncio.create_task(server.serve())
    while not server.started:
        if task.done():
            task.result()
        await asyncio.sleep(0.01)
    host, port = server.servers[0].sockets[0].getsockname()[:2]

    yield f"{host}:{port}"

    await manager.close_all()
    server.should_exit = True
    await task
