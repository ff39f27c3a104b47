import os
import sys
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio
import fakeredis.aioredis

# Configure test environment before the app modules read it
TEST_DB = os.path.join(tempfile.mkdtemp(prefix='pairplay-tests-'), 'test.db')
os.environ.setdefault('DATABASE_URL', f'sqlite+aiosqlite:///{TEST_DB}')
os.environ.setdefault('JWT_SECRET', 'test-secret')
os.environ.setdefault('INVITE_GRACE_SECONDS', '0.5')

# Ensure the package root is on sys.path when pytest changes CWD to this tests dir
HERE = Path(__file__).resolve()
PKG_ROOT = HERE.parents[2]
if str(PKG_ROOT) not in sys.path:
    sys.path.insert(0, str(PKG_ROOT))

from pairplay import core  # noqa: E402
from pairplay.models import Base, engine  # noqa: E402
from pairplay.crud import create_user  # noqa: E402
from pairplay.auth import create_access_token  # noqa: E402
from pairplay.presence import presence  # noqa: E402
from pairplay.friend_requests import friend_requests  # noqa: E402
from pairplay.game_invites import invites  # noqa: E402


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
    redis = fakeredis.aioredis.FakeRedis(decode_responses=True)
    await redis.flushall()
    core.REDIS = redis
    yield redis
    core.REDIS = None
    await redis.flushall()
    await redis.aclose()


@pytest_asyncio.fixture(autouse=True)
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await invites.shutdown()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # pooled connections belong to this test's event loop
    await engine.dispose()


@pytest_asyncio.fixture
async def users(db):
    alice = await create_user('alice', 'Alice Smith')
    bob = await create_user('bob', 'Bob Jones')
    carol = await create_user('carol', 'Carol Smithers')
    return alice, bob, carol


@pytest.fixture
def token_for():
    def _token(user):
        return create_access_token({'id': user.id})
    return _token


@pytest.fixture
def befriend():
    async def _befriend(a, b):
        fr = await friend_requests.send(a.id, b.id)
        await friend_requests.accept(fr.id, by_user_id=b.id)
    return _befriend


@pytest.fixture
def go_active():
    async def _go_active(*people):
        for person in people:
            await presence.set_active(person.id, True)
    return _go_active
