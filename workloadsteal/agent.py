import asyncio
from typing import Awaitable, Optional

from loguru import logger

from workloadsteal.admission.admission_controller import (
    MutatingAdmissionController,
    ValidatingAdmissionController,
)
from workloadsteal.config import AdmissionConfig
from workloadsteal.exceptions import ListenerError
from workloadsteal.providers.kubernetes import get_core_v1
from workloadsteal.providers.notification import DetachedNotifier, NotificationPublisher
from workloadsteal.services.webhook import WebhookServer
from workloadsteal.watcher import PodWatcher


class StealAgent:
    """
    Runs the mutate listener, the validate listener and the pod watcher side by side.

    The first of them to exit stops the whole agent; restarting is left to the
    process supervisor.
    """

    def __init__(self, config: AdmissionConfig, core_v1=None):
        self.config = config
        self.publisher = NotificationPublisher(config)
        self.notifier = DetachedNotifier(self.publisher, config.nats_subject)
        self.server = WebhookServer(
            config,
            mutator=MutatingAdmissionController(config, notify=self.notifier),
            validator=ValidatingAdmissionController(config),
        )

        self.watcher: Optional[PodWatcher] = None
        if config.watch_enabled:
            self.watcher = PodWatcher(config, self.publisher, core_v1 or get_core_v1())

    async def run(self) -> None:
        stop = asyncio.Event()
        tasks = [
            asyncio.create_task(self._supervise("mutate listener", self.server.serve(self.config.mutate_port), stop)),
            asyncio.create_task(self._supervise("validate listener", self.server.serve(self.config.validate_port), stop)),
        ]
        if self.watcher is not None:
            tasks.append(asyncio.create_task(self._supervise("pod watcher", self.watcher.run(stop), stop)))

        await stop.wait()
        logger.warning("Shutting down workload steal agent")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    @staticmethod
    async def _supervise(name: str, job: Awaitable, stop: asyncio.Event) -> None:
        try:
            await job
            logger.warning("{} exited", name)
        except asyncio.CancelledError:
            raise
        except ListenerError as e:
            logger.error("{} failed: {}", name, e)
        except Exception:
            logger.exception("{} exited with error", name)
        finally:
            stop.set()
