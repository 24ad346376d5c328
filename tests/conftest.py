import asyncio
from typing import Dict, List, Optional

import pytest
from httpx import ASGITransport, AsyncClient

from backend.src.core.config import Settings
from backend.src.init_db import create_tables
from backend.src.main import create_app
from backend.src.models.chatbot import Chatbot, DEFAULT_SETTINGS
from backend.src.models.user import User
from backend.src.services.ai_gateway import AIGateway
from backend.src.utils.auth import get_password_hash

FALLBACK = "I cannot assist with that."


class StubGateway(AIGateway):
    """Deterministic gateway: echoes the latest visitor message unless told otherwise."""

    model_name = "stub-model"

    def __init__(self, reply: Optional[str] = None, error: Optional[Exception] = None,
                 delay: float = 0.0, timeout: float = 5.0, chunks: Optional[List[str]] = None,
                 interval: float = 0.0):
        super().__init__(timeout=timeout)
        self.reply = reply
        self.error = error
        self.delay = delay
        self.chunks = chunks
        self.interval = interval
        self.calls = []
        self.stream_closed = False

    async def _complete(self, context, settings):
        self.calls.append((context, settings))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.reply is not None:
            return self.reply
        return f"echo: {context.history[-1][1]}"

    async def _stream(self, context, settings):
        self.calls.append((context, settings))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        try:
            for chunk in self.chunks if self.chunks is not None else ["Hello", ", ", "visitor"]:
                yield chunk
                if self.interval:
                    await asyncio.sleep(self.interval)
        finally:
            self.stream_closed = True


class FakeRedis:
    """In-memory stand-in for the few redis.asyncio calls the app makes."""

    def __init__(self):
        self.store: Dict[str, object] = {}
        self.expiry: Dict[str, int] = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        if ex:
            self.expiry[key] = ex
        return True

    async def incr(self, key):
        self.store[key] = int(self.store.get(key, 0)) + 1
        return self.store[key]

    async def expire(self, key, seconds):
        self.expiry[key] = seconds
        return True

    async def aclose(self):
        pass


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        POSTGRES_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        SECRET_KEY="test-secret",
        REDIS_URL=None,
        LLM_TIMEOUT_SECONDS=0.5,
        CONTEXT_WINDOW_MESSAGES=10,
        DB_CREATE_TABLES=False,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def redis():
    return None


@pytest.fixture
async def app(settings, gateway, redis):
    application = create_app(settings, ai_gateway=gateway, redis=redis)
    await create_tables(application.state.engine)
    yield application
    await application.state.engine.dispose()


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture
async def db(app):
    async with app.state.sessionmaker() as session:
        yield session


async def register(client: AsyncClient, email: str = "owner@example.com", password: str = "s3cret-pass") -> Dict[str, str]:
    response = await client.post("/api/v1/auth/register", json={"email": email, "password": password, "full_name": "Owner"})
    assert response.status_code == 201, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
async def auth_headers(client):
    return await register(client)


def chatbot_payload(**overrides):
    payload = {
        "name": "Support Bot",
        "description": "Answers questions about the shop.",
        "personality": "friendly and concise",
        "knowledgeBase": ["We open at 9am.", "We close at 5pm."],
        "settings": {
            "maxTokens": 500,
            "temperature": 0.3,
            "responseDelay": 0,
            "fallbackMessage": FALLBACK,
            "collectUserInfo": False,
        },
    }
    payload.update(overrides)
    return payload


@pytest.fixture
async def chatbot(client, auth_headers):
    response = await client.post("/api/v1/chatbots", json=chatbot_payload(), headers=auth_headers)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
async def seeded_chatbot(db):
    """A user and an active chatbot written straight through the ORM."""
    user = User(email="seed@example.com", hashed_password=get_password_hash("irrelevant"))
    db.add(user)
    await db.commit()

    bot = Chatbot(
        user_id=user.id,
        name="Seed Bot",
        personality="calm",
        knowledge_base=["Fact one.", "Fact two."],
        settings={**DEFAULT_SETTINGS, "response_delay": 0, "fallback_message": FALLBACK},
    )
    db.add(bot)
    await db.commit()
    await db.refresh(bot)
    return bot
