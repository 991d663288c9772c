"""
Dramatiq broker configuration.

Redis-based message broker for task queue. The test environment uses
an in-memory stub broker instead.
"""

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker
from dramatiq.middleware import CurrentMessage, Retries, ShutdownNotifications
from loguru import logger

from app.config.settings import settings

if settings.environment == "test":
    broker = StubBroker()
    broker.emit_after("process_boot")

    dramatiq.set_broker(broker)
    logger.debug("Dramatiq stub broker initialized")
else:
    redis_broker = RedisBroker(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password if settings.redis_password else None,
        db=settings.redis_db,
    )

    # ShutdownNotifications: Allows workers to gracefully shutdown
    # CurrentMessage: Provides access to current message in actors
    # Retries: Exponential backoff for failed tasks
    redis_broker.add_middleware(ShutdownNotifications())
    redis_broker.add_middleware(CurrentMessage())
    redis_broker.add_middleware(
        Retries(
            max_retries=3,
            min_backoff=1000,  # 1 second
            max_backoff=60000,  # 1 minute
            retry_when=lambda retries_so_far, exception: retries_so_far < 3,
        )
    )

    # Set as default broker
    dramatiq.set_broker(redis_broker)

    # Export broker
    broker = redis_broker

    logger.info(
        f"Dramatiq broker initialized: "
        f"redis://{settings.redis_host}:{settings.redis_port}/{settings.redis_db}"
    )
