from abc import ABC, abstractmethod
from typing import Callable, Optional

from fastapi import status
from loguru import logger
from pydantic import ValidationError

from workloadsteal.config import AdmissionConfig
from workloadsteal.exceptions import DecodeError, PatchSynthesisError
from workloadsteal.models import (
    DEPLOYMENT_RESOURCE,
    POD_RESOURCE,
    AdmissionRequest,
    AdmissionVerdict,
    Deployment,
    Operation,
    Pod,
    WorkloadObject,
)
from workloadsteal.patch import diff
from workloadsteal.policy import is_excluded, is_marked


STEAL_NODE_SELECTOR = {
    "node-stolen": "true",
    "node-id": "7388q9y8989qwyehadsbdf",
}
STOLEN_LABEL = "pod-stolen"


def redirect_scheduling(pod: Pod) -> Pod:
    """Return a deep copy of ``pod`` pinned to the steal target and marked as stolen."""
    stolen = pod.model_copy(deep=True)
    stolen.spec.node_selector = dict(STEAL_NODE_SELECTOR)
    stolen.metadata.labels = {**stolen.labels, STOLEN_LABEL: "true"}
    return stolen


class AdmissionController(ABC):
    """Decides admission for a single request. Holds no per-request state."""

    def __init__(self, config: AdmissionConfig):
        self.config = config

    @abstractmethod
    def decide(self, request: AdmissionRequest) -> AdmissionVerdict:
        raise NotImplementedError()

    def _decode(self, request: AdmissionRequest, model: type[WorkloadObject]) -> WorkloadObject:
        try:
            return model.model_validate_json(request.object)
        except ValidationError as e:
            raise DecodeError(f"Failed to decode {request.resource.resource}: {e}") from e


class MutatingAdmissionController(AdmissionController):
    """
    Steals eligible pods on creation.

    A pod is eligible unless it carries the opt-out label or lives in an
    excluded namespace. Eligible pods get a notification carrying the original
    object and a patch redirecting them to the steal target.
    """

    def __init__(self, config: AdmissionConfig, notify: Callable[[Pod], None]):
        super().__init__(config)
        self.notify = notify

    def decide(self, request: AdmissionRequest) -> AdmissionVerdict:
        if request.resource != POD_RESOURCE:
            logger.error("Unexpected resource: expected {}, received {}", POD_RESOURCE, request.resource)
            return AdmissionVerdict.no_opinion(request.uid)
        if request.operation != Operation.CREATE:
            logger.error("Unexpected operation: expected {}, received {}", Operation.CREATE, request.operation)
            return AdmissionVerdict.no_opinion(request.uid)

        try:
            pod = self._decode(request, Pod)
        except DecodeError as e:
            logger.error("Failed to decode pod for request {}: {}", request.uid, e)
            return AdmissionVerdict.deny(request.uid, str(e))

        if is_marked(pod.labels, self.config.opt_out_label):
            logger.info("Pod {} is not eligible to steal as it has the label {}", pod.name, self.config.opt_out_label)
            return AdmissionVerdict.allow(request.uid)

        namespace = pod.namespace or request.namespace
        logger.info("Pod create event: {}/{}", namespace, pod.name)
        if is_excluded(namespace, self.config.ignore_namespaces):
            logger.info("Ignoring pod {}/{} as it belongs to an ignored namespace", namespace, pod.name)
            return AdmissionVerdict.no_opinion(request.uid)

        self.notify(pod)
        return self._steal(request.uid, pod)

    def _steal(self, uid: str, pod: Pod) -> AdmissionVerdict:
        try:
            patch = diff(pod, redirect_scheduling(pod))
        except PatchSynthesisError as e:
            logger.error("Failed to build patch for pod {}: {}", pod.name, e)
            return AdmissionVerdict.deny(uid, str(e), code=status.HTTP_500_INTERNAL_SERVER_ERROR)

        logger.info("Stealing pod {} with {} patch operations", pod.name, len(patch))
        return AdmissionVerdict.mutate(uid, patch)


class ValidatingAdmissionController(AdmissionController):
    """
    Rejects pods and deployments that carry the marker label.

    The polarity is the reverse of :class:`MutatingAdmissionController`, where
    the same label exempts the pod.
    """

    MODELS: dict = {
        POD_RESOURCE: Pod,
        DEPLOYMENT_RESOURCE: Deployment,
    }

    def decide(self, request: AdmissionRequest) -> AdmissionVerdict:
        model: Optional[type[WorkloadObject]] = self.MODELS.get(request.resource)
        if model is None:
            logger.error("Unexpected resource {} on the validating webhook", request.resource)
            return AdmissionVerdict.no_opinion(request.uid)

        try:
            workload = self._decode(request, model)
        except DecodeError as e:
            logger.error("Failed to decode {} for request {}: {}", request.resource.resource, request.uid, e)
            return AdmissionVerdict.deny(request.uid, str(e))

        if is_marked(workload.labels, self.config.opt_out_label):
            message = (
                f"{model.__name__} {workload.namespace or request.namespace}/{workload.name} "
                f"is rejected: it carries the label {self.config.opt_out_label}"
            )
            logger.info(message)
            return AdmissionVerdict.deny(request.uid, message)

        return AdmissionVerdict.allow(request.uid)
