"""Tests for ValkeyClient - thin wrapper over redis-py used for tenant locks."""

import pytest
import redis
from unittest.mock import MagicMock, patch

from clients.valkey_client import ValkeyClient


@pytest.fixture
def redis_mock():
    return MagicMock()


@pytest.fixture
def valkey(redis_mock):
    with patch("clients.valkey_client.redis.from_url", return_value=redis_mock) as from_url:
        client = ValkeyClient("redis://localhost:6379/0")
    from_url.assert_called_once_with("redis://localhost:6379/0", decode_responses=True)
    return client


class TestValkeyClientInit:
    """Connection - fail fast."""

    def test_pings_on_connect(self, valkey, redis_mock):
        redis_mock.ping.assert_called_once()

    def test_unreachable_raises(self):
        broken = MagicMock()
        broken.ping.side_effect = redis.ConnectionError("refused")
        with patch("clients.valkey_client.redis.from_url", return_value=broken):
            with pytest.raises(redis.ConnectionError):
                ValkeyClient("redis://nowhere:6379/0")


class TestBasicOperations:

    def test_get(self, valkey, redis_mock):
        redis_mock.get.return_value = "value"
        assert valkey.get("key") == "value"

    def test_set_without_expiry(self, valkey, redis_mock):
        valkey.set("key", "value")
        redis_mock.set.assert_called_once_with("key", "value")

    def test_set_with_expiry(self, valkey, redis_mock):
        valkey.set("key", "value", expire_seconds=60)
        redis_mock.setex.assert_called_once_with("key", 60, "value")

    @pytest.mark.parametrize("deleted,expected", [(1, True), (0, False)])
    def test_delete(self, valkey, redis_mock, deleted, expected):
        redis_mock.delete.return_value = deleted
        assert valkey.delete("key") is expected


class TestLock:

    def test_lock_passes_timeouts(self, valkey, redis_mock):
        lock = valkey.lock("billing:lock:abc", timeout=30, blocking_timeout=10)
        redis_mock.lock.assert_called_once_with("billing:lock:abc", timeout=30, blocking_timeout=10)
        assert lock is redis_mock.lock.return_value

    def test_close(self, valkey, redis_mock):
        valkey.close()
        redis_mock.close.assert_called_once()
