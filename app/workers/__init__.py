"""
Dramatiq worker infrastructure for background jobs.

Uses the Redis broker in every environment except ``test``, where an
in-memory StubBroker keeps actors importable without Redis.
"""
import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker

from app.config import settings

if settings.environment == "test":
    broker = StubBroker()
else:
    broker = RedisBroker(url=settings.redis_url)

dramatiq.set_broker(broker)
