import asyncio
from typing import Any, Mapping, Union

import nats
import orjson
from loguru import logger
from nats.errors import Error as NatsError
from pydantic_core import PydanticSerializationError

from workloadsteal.config import NatsConfig
from workloadsteal.exceptions import PublishError
from workloadsteal.models import NotificationMessage, WorkloadObject


Notifiable = Union[WorkloadObject, Mapping[str, Any]]


def serialize(obj: Notifiable) -> bytes:
    if isinstance(obj, WorkloadObject):
        obj = obj.to_json_tree()
    return orjson.dumps(obj)


class NotificationPublisher:
    """
    Publishes workload snapshots to NATS.

    Every call opens its own connection and closes it before returning. Failures
    are logged with the failing stage and reported as ``False``; they never
    propagate to the caller.
    """

    def __init__(self, config: NatsConfig):
        self.config = config

    async def publish(self, subject: str, obj: Notifiable) -> bool:
        try:
            await self._publish(subject, obj)
        except PublishError as e:
            logger.error("Failed to publish to NATS subject {} ({} stage): {}", subject, e.stage, e)
            return False
        return True

    async def _publish(self, subject: str, obj: Notifiable) -> None:
        try:
            connection = await nats.connect(
                self.config.nats_url,
                connect_timeout=self.config.nats_connect_timeout,
                allow_reconnect=False,
                max_reconnect_attempts=0,
            )
        except (NatsError, OSError, asyncio.TimeoutError) as e:
            raise PublishError("connect", f"{self.config.nats_url}: {e}") from e

        try:
            logger.debug("Connected to NATS server {}", self.config.nats_url)
            try:
                message = NotificationMessage(topic=subject, payload=serialize(obj))
            except (TypeError, PydanticSerializationError) as e:
                raise PublishError("serialize", str(e)) from e

            try:
                await connection.publish(message.topic, message.payload)
                await connection.flush(timeout=self.config.nats_connect_timeout)
            except (NatsError, OSError, asyncio.TimeoutError) as e:
                raise PublishError("publish", str(e)) from e
        finally:
            await connection.close()

        logger.info("Published workload to NATS subject {} ({} bytes)", message.topic, len(message.payload))
        logger.debug("Published payload: {}", message.payload)


class DetachedNotifier:
    """
    Fire-and-forget bridge from the synchronous decision engine to the publisher.

    Must be called from a thread running an asyncio event loop. The admission
    verdict never waits for, nor depends on, the publish outcome.
    """

    def __init__(self, publisher: NotificationPublisher, subject: str):
        self.publisher = publisher
        self.subject = subject
        self._tasks: set[asyncio.Task] = set()

    def __call__(self, obj: Notifiable) -> None:
        task = asyncio.get_running_loop().create_task(self.publisher.publish(self.subject, obj))
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Notification to {} was cancelled", self.subject)
        elif task.exception() is not None:
            logger.opt(exception=task.exception()).error("Notification to {} failed", self.subject)

    @property
    def pending(self) -> int:
        return len(self._tasks)
