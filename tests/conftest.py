# conftest.py
"""
Shared test fixtures for the workload steal agent tests
"""

import os

import orjson
import pytest

from workloadsteal.admission.admission_controller import (
    MutatingAdmissionController,
    ValidatingAdmissionController,
)
from workloadsteal.config import AdmissionConfig
from workloadsteal.models import AdmissionRequest, GroupVersionResource


POD_GVR = {"group": "", "version": "v1", "resource": "pods"}
DEPLOYMENT_GVR = {"group": "apps", "version": "v1", "resource": "deployments"}


@pytest.fixture(autouse=True)
def env():
    """Restore the environment and keep a host config file out of the tests."""
    original_env = os.environ.copy()
    os.environ["CONFIG_FILE"] = "/nonexistent/workload-steal-agent/config.json"

    yield

    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def agent_config() -> AdmissionConfig:
    return AdmissionConfig(
        nats_url="nats://nats.test:4222",
        nats_subject="workloads.stolen",
        opt_out_label="no-steal",
        ignore_namespaces=["team-ignored"],
        watch_enabled=False,
        insecure=True,
    )


class RecordingNotifier:
    def __init__(self):
        self.notified = []

    def __call__(self, obj) -> None:
        self.notified.append(obj)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def mutating_controller(agent_config, notifier) -> MutatingAdmissionController:
    """Create mutating admission controller instance for testing."""
    return MutatingAdmissionController(agent_config, notify=notifier)


@pytest.fixture
def validating_controller(agent_config) -> ValidatingAdmissionController:
    """Create validating admission controller instance for testing."""
    return ValidatingAdmissionController(agent_config)


@pytest.fixture
def plain_pod():
    """A pod with no labels in a namespace open to stealing."""
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": "web-0",
            "namespace": "team-a",
        },
        "spec": {
            "containers": [
                {
                    "name": "app",
                    "image": "docker.io/library/nginx:1.27",
                }
            ]
        },
    }


@pytest.fixture
def opted_out_pod(plain_pod):
    """A pod carrying the opt-out label."""
    plain_pod["metadata"]["labels"] = {"no-steal": "true"}
    return plain_pod


@pytest.fixture
def labelled_pod():
    """A pod with labels and an existing node selector."""
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {
            "name": "worker-1",
            "namespace": "team-b",
            "labels": {
                "app": "worker",
                "no-steal": "False",
            },
        },
        "spec": {
            "nodeSelector": {
                "zone": "eu-west-1a",
            },
            "containers": [
                {
                    "name": "worker",
                    "image": "quay.io/acme/worker:2.1",
                }
            ],
        },
    }


@pytest.fixture
def deployment():
    """A deployment without the marker label."""
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {
            "name": "api",
            "namespace": "team-a",
            "labels": {"app": "api"},
        },
        "spec": {
            "replicas": 2,
            "template": {
                "metadata": {"labels": {"app": "api"}},
                "spec": {"containers": [{"name": "api", "image": "docker.io/acme/api:1.0"}]},
            },
        },
    }


def create_request(resource_object, uid="test-uid-123", operation="CREATE", resource=None, namespace=None):
    """Helper function to create a decoded admission request."""
    raw = resource_object if isinstance(resource_object, bytes) else orjson.dumps(resource_object)
    return AdmissionRequest(
        uid=uid,
        resource=GroupVersionResource(**(resource or POD_GVR)),
        operation=operation,
        object=raw,
        namespace=namespace,
    )


def create_review(resource_object, uid="test-uid-123", operation="CREATE", resource=None):
    """Helper function to create an AdmissionReview body."""
    return {
        "apiVersion": "admission.k8s.io/v1",
        "kind": "AdmissionReview",
        "request": {
            "uid": uid,
            "kind": {"group": "", "version": "v1", "kind": "Pod"},
            "resource": resource or POD_GVR,
            "operation": operation,
            "object": resource_object,
        },
    }
