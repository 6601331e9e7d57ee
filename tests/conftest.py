import fakeredis
import pytest

from double_restraint import DoubleRestraint, LocalConcurrencyLimiter, RedisConcurrencyLimiter
from double_restraint.redis import set_client_override


@pytest.fixture
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    yield client
    client.flushall()


@pytest.fixture(params=["local", "redis"])
def limiter(request, redis_client):
    if request.param == "redis":
        return RedisConcurrencyLimiter(redis_client, slot_timeout=30, key_prefix="test:")
    return LocalConcurrencyLimiter()


@pytest.fixture
def restraint(limiter):
    return DoubleRestraint(
        "test", limit=3, timeout=0.01, long_running_timeout=0.1, long_running_limit=2, limiter=limiter
    )


@pytest.fixture(autouse=True)
def _reset_redis_override():
    yield
    set_client_override(None)
