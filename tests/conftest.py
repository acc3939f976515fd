"""Common fixtures: an in-memory Mongo, seeded users and a wired app."""
from types import SimpleNamespace

import httpx
import pytest
from bson import ObjectId
from mongomock_motor import AsyncMongoMockClient

from arotu_chat.app import create_app
from arotu_chat.auth import issue_token
from arotu_chat.config import Settings


@pytest.fixture
def settings() -> Settings:
    return Settings(jwt_secret='test-secret', mongodb_db='chatchat_test', log_level='WARNING')


@pytest.fixture
def db():
    return AsyncMongoMockClient()['chatchat_test']


@pytest.fixture
async def users(db):
    """Three accounts, as the auth service would have created them."""
    people = SimpleNamespace(
        alice=str(ObjectId()),
        bob=str(ObjectId()),
        carol=str(ObjectId()),
    )
    await db['users'].insert_many([
        {'_id': ObjectId(people.alice), 'username': 'alice', 'avatar': 'https://cdn.test/alice.png'},
        {'_id': ObjectId(people.bob), 'username': 'bob', 'avatar': ''},
        {'_id': ObjectId(people.carol), 'username': 'carol'},
    ])
    return people


@pytest.fixture
def app(settings, db):
    return create_app(settings, db)


@pytest.fixture
def service(app):
    return app.state.messaging


@pytest.fixture
def token(settings):
    def _token(user_id: str) -> str:
        return issue_token(user_id, settings)
    return _token


@pytest.fixture
def auth(token):
    def _auth(user_id: str) -> dict:
        return {'Authorization': f'Bearer {token(user_id)}'}
    return _auth


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url='http://test') as c:
        yield c


class FakeConnection:
    """Stands in for a WebSocket connection on the delivery channel."""

    _next = 0

    def __init__(self, fail: bool = False):
        FakeConnection._next += 1
        self.id = FakeConnection._next
        self.fail = fail
        self.sent = []

    async def send(self, payload):
        if self.fail:
            raise ConnectionError('socket closed')
        self.sent.append(payload)

    def of_type(self, event_type):
        return [p for p in self.sent if p.get('type') == event_type]


@pytest.fixture
def fake_connection():
    return FakeConnection
