"""
Cluster-wide pod watch that republishes pod creations to the message bus.
"""

import asyncio
import threading
from concurrent.futures import CancelledError
from typing import Any, Callable, Optional

import backoff
from kubernetes import watch
from kubernetes.client.rest import ApiException
from loguru import logger
from urllib3.exceptions import HTTPError

from workloadsteal.config import AdmissionConfig
from workloadsteal.models import WatchEventType
from workloadsteal.policy import is_excluded
from workloadsteal.providers.notification import NotificationPublisher


WATCH_ERRORS = (ApiException, HTTPError, OSError)

_STREAM_CLOSED = object()


class PodWatcher:
    """
    Watches pod lifecycle events in all namespaces.

    The blocking watch stream is drained on a daemon thread; events are handled
    on the event loop in arrival order through a bounded queue. When the stream
    closes or fails the loop ends and the ``stop`` event passed to :meth:`run`
    is set. Reconnection is limited to ``watch_reconnect_attempts`` after a
    stream error and resumes from the last seen resourceVersion.
    """

    def __init__(self, config: AdmissionConfig, publisher: NotificationPublisher, core_v1, watch_factory=watch.Watch):
        self.config = config
        self.publisher = publisher
        self.core_v1 = core_v1
        self._watch_factory = watch_factory
        self._watcher: Optional[watch.Watch] = None
        self._resource_version: Optional[str] = None

    async def run(self, stop: asyncio.Event) -> None:
        loop = asyncio.get_running_loop()
        events: asyncio.Queue = asyncio.Queue(maxsize=self.config.watch_queue_size)

        def deliver(item: Any) -> None:
            # Blocks the watch thread while the queue is full.
            try:
                asyncio.run_coroutine_threadsafe(events.put(item), loop).result()
            except (CancelledError, RuntimeError):
                logger.debug("Event loop gone, dropping watch event")

        thread = threading.Thread(target=self._pump, args=(deliver,), daemon=True, name="pod-watch")
        thread.start()
        logger.info("Listening for pod creation events in all namespaces")

        try:
            while True:
                event = await events.get()
                if event is _STREAM_CLOSED:
                    break
                await self.handle_event(event)
        finally:
            self.close()
            logger.warning("Pod watch ended")
            stop.set()

    async def handle_event(self, event: dict) -> bool:
        """Publish the pod of an ADDED event unless its namespace is excluded."""
        if event.get("type") != WatchEventType.ADDED:
            return False

        pod = event.get("raw_object") or {}
        metadata = pod.get("metadata") or {}
        namespace, name = metadata.get("namespace"), metadata.get("name")

        if is_excluded(namespace, self.config.ignore_namespaces):
            logger.debug("Skipping pod {}/{} in ignored namespace", namespace, name)
            return False

        logger.info("Pod create event: {}/{}", namespace, name)
        return await self.publisher.publish(self.config.nats_subject, pod)

    def close(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()

    def _pump(self, deliver: Callable[[Any], None]) -> None:
        stream_once = backoff.on_exception(
            backoff.expo,
            WATCH_ERRORS,
            max_tries=self.config.watch_reconnect_attempts + 1,
            on_backoff=self._log_reconnect,
        )(self._stream)

        try:
            stream_once(deliver)
        except WATCH_ERRORS as e:
            logger.error("Pod watch stream failed: {}", e)
        finally:
            deliver(_STREAM_CLOSED)

    def _stream(self, deliver: Callable[[Any], None]) -> None:
        self._watcher = self._watch_factory()
        # Passing timeout_seconds keeps the client from reconnecting on its own.
        kwargs = {"timeout_seconds": self.config.watch_timeout_seconds}
        if self._resource_version:
            # Without a resourceVersion the API server replays existing pods as ADDED.
            kwargs["resource_version"] = self._resource_version
            logger.info("Resuming pod watch from resourceVersion {}", self._resource_version)

        for event in self._watcher.stream(self.core_v1.list_pod_for_all_namespaces, **kwargs):
            metadata = (event.get("raw_object") or {}).get("metadata") or {}
            self._resource_version = metadata.get("resourceVersion") or self._resource_version
            deliver(event)
        logger.info("Pod watch stream closed by the server")

    @staticmethod
    def _log_reconnect(details: dict) -> None:
        logger.warning("Reconnecting pod watch after error (attempt {})", details["tries"])
