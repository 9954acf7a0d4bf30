"""Shared fixtures: a controllable clock, fakeredis, an in-memory audit sink."""

from typing import List

import fakeredis
import fakeredis.aioredis
import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError

from apiguard.core.audit import LogSink, RequestLogRecord
from apiguard.core.config import DetectionConfig, MonitorConfig


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ListSink(LogSink):
    def __init__(self):
        self.records: List[RequestLogRecord] = []

    def append(self, record):
        self.records.append(record)


class BrokenSink(LogSink):
    def append(self, record):
        raise OSError("disk full")


class _DownPipeline:
    def __getattr__(self, name):
        return lambda *args, **kwargs: self

    async def execute(self):
        raise RedisConnectionError("Connection refused")


class DownRedis:
    """Quacks like redis.asyncio.Redis, but every command fails."""

    def pipeline(self, transaction=True):
        return _DownPipeline()

    async def exists(self, *keys):
        raise RedisConnectionError("Connection refused")

    async def set(self, *args, **kwargs):
        raise RedisConnectionError("Connection refused")

    async def delete(self, *keys):
        raise RedisConnectionError("Connection refused")

    async def aclose(self):
        return None


def make_config(**detection) -> MonitorConfig:
    return MonitorConfig(detection=DetectionConfig(**detection))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return ListSink()


@pytest_asyncio.fixture
async def redis_client():
    client = fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()
