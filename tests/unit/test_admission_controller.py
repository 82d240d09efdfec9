# tests/unit/test_admission_controller.py
"""
Unit tests for the mutating and validating admission controllers
"""

import orjson
import pytest
from conftest import DEPLOYMENT_GVR, create_request

from workloadsteal.admission.admission_controller import (
    STEAL_NODE_SELECTOR,
    MutatingAdmissionController,
    redirect_scheduling,
)
from workloadsteal.exceptions import PatchSynthesisError
from workloadsteal.models import Decision, PatchType, Pod
from workloadsteal.patch import apply


def test_mutate_plain_pod(mutating_controller, notifier, plain_pod):
    """An eligible pod is redirected to the steal target and announced."""
    verdict = mutating_controller.decide(create_request(plain_pod))

    assert verdict.decision == Decision.MUTATE
    assert verdict.allowed is True
    assert verdict.patch_type == PatchType.JSONPatch
    assert verdict.status is None

    patched = apply(plain_pod, verdict.patch)
    assert patched["spec"]["nodeSelector"] == {"node-stolen": "true", "node-id": "7388q9y8989qwyehadsbdf"}
    assert patched["metadata"]["labels"] == {"pod-stolen": "true"}
    assert patched["spec"]["containers"] == plain_pod["spec"]["containers"]


def test_mutate_notifies_with_original_pod(mutating_controller, notifier, plain_pod):
    mutating_controller.decide(create_request(plain_pod))

    assert len(notifier.notified) == 1
    notified = notifier.notified[0]
    assert isinstance(notified, Pod)
    assert notified.name == "web-0"
    assert notified.namespace == "team-a"
    assert notified.metadata.labels is None
    assert notified.spec.node_selector is None


def test_mutate_opted_out_pod(mutating_controller, notifier, opted_out_pod):
    verdict = mutating_controller.decide(create_request(opted_out_pod))

    assert verdict.decision == Decision.ALLOW
    assert verdict.allowed is True
    assert verdict.patch is None
    assert notifier.notified == []


def test_mutate_explicit_false_label_is_stolen(mutating_controller, notifier, labelled_pod):
    verdict = mutating_controller.decide(create_request(labelled_pod))

    assert verdict.decision == Decision.MUTATE
    patched = apply(labelled_pod, verdict.patch)
    assert patched["metadata"]["labels"] == {"app": "worker", "no-steal": "False", "pod-stolen": "true"}
    assert patched["spec"]["nodeSelector"] == STEAL_NODE_SELECTOR
    assert len(notifier.notified) == 1


@pytest.mark.parametrize("namespace", ["kube-system", "default", "team-ignored"])
def test_mutate_excluded_namespace(mutating_controller, notifier, plain_pod, namespace):
    plain_pod["metadata"]["namespace"] = namespace

    verdict = mutating_controller.decide(create_request(plain_pod))

    assert verdict.decision == Decision.NO_OPINION
    assert verdict.patch is None
    assert verdict.status is None
    assert notifier.notified == []


def test_mutate_falls_back_to_request_namespace(mutating_controller, notifier, plain_pod):
    del plain_pod["metadata"]["namespace"]

    verdict = mutating_controller.decide(create_request(plain_pod, namespace="kube-system"))

    assert verdict.decision == Decision.NO_OPINION
    assert notifier.notified == []


def test_mutate_malformed_object(mutating_controller, notifier):
    verdict = mutating_controller.decide(create_request(b"{not json"))

    assert verdict.decision == Decision.DENY
    assert verdict.allowed is False
    assert verdict.patch is None
    assert verdict.status is not None
    assert verdict.status.message
    assert verdict.status.code is None
    assert notifier.notified == []


def test_mutate_wrong_resource(mutating_controller, notifier, deployment):
    verdict = mutating_controller.decide(create_request(deployment, resource=DEPLOYMENT_GVR))

    assert verdict.decision == Decision.NO_OPINION
    assert notifier.notified == []


@pytest.mark.parametrize("operation", ["UPDATE", "DELETE", "CONNECT"])
def test_mutate_wrong_operation(mutating_controller, notifier, plain_pod, operation):
    verdict = mutating_controller.decide(create_request(plain_pod, operation=operation))

    assert verdict.decision == Decision.NO_OPINION
    assert notifier.notified == []


def test_mutate_synthesis_failure(mutating_controller, notifier, plain_pod, monkeypatch):
    def failing_diff(original, modified):
        raise PatchSynthesisError("Failed to create patch: boom")

    monkeypatch.setattr("workloadsteal.admission.admission_controller.diff", failing_diff)

    verdict = mutating_controller.decide(create_request(plain_pod))

    assert verdict.decision == Decision.DENY
    assert verdict.patch is None
    assert verdict.status.message == "Failed to create patch: boom"
    assert verdict.status.code == 500


@pytest.mark.parametrize("uid", ["a", "test-uid-123", "705ab4f5-6393-11e8-b7cc-42010a800002"])
def test_uid_round_trip(mutating_controller, validating_controller, labelled_pod, opted_out_pod, uid):
    for controller, obj in [
        (mutating_controller, labelled_pod),
        (mutating_controller, opted_out_pod),
        (validating_controller, opted_out_pod),
        (validating_controller, labelled_pod),
    ]:
        assert controller.decide(create_request(obj, uid=uid)).uid == uid

    assert mutating_controller.decide(create_request(b"[]", uid=uid)).uid == uid
    assert mutating_controller.decide(create_request(labelled_pod, uid=uid, operation="DELETE")).uid == uid


def test_mutate_twice_converges(mutating_controller, plain_pod, labelled_pod):
    """Patches from repeated decisions on the same input do not stack markers."""
    for pod in (plain_pod, labelled_pod):
        first = mutating_controller.decide(create_request(pod))
        second = mutating_controller.decide(create_request(pod))

        once = apply(pod, first.patch)
        twice = apply(once, second.patch)

        assert twice == once
        assert twice["metadata"]["labels"]["pod-stolen"] == "true"
        assert twice["spec"]["nodeSelector"] == STEAL_NODE_SELECTOR


def test_redirect_scheduling_does_not_touch_original(labelled_pod):
    pod = Pod.model_validate(labelled_pod)

    stolen = redirect_scheduling(pod)

    assert pod.spec.node_selector == {"zone": "eu-west-1a"}
    assert "pod-stolen" not in pod.labels
    assert stolen.spec.node_selector == STEAL_NODE_SELECTOR
    assert stolen.labels["pod-stolen"] == "true"
    stolen.spec.model_extra["containers"][0]["image"] = "changed"
    assert pod.spec.model_extra["containers"][0]["image"] == "quay.io/acme/worker:2.1"


def test_mutating_controller_reads_ignore_list_per_request(agent_config, notifier, plain_pod):
    controller = MutatingAdmissionController(agent_config, notify=notifier)
    agent_config.ignore_namespaces.append("team-a")

    verdict = controller.decide(create_request(plain_pod))

    assert verdict.decision == Decision.NO_OPINION


# Validating webhook: the marker label rejects instead of exempting.

def test_validate_unmarked_pod_allowed(validating_controller, plain_pod):
    verdict = validating_controller.decide(create_request(plain_pod))

    assert verdict.decision == Decision.ALLOW
    assert verdict.patch is None


def test_validate_marked_pod_denied(validating_controller, opted_out_pod):
    verdict = validating_controller.decide(create_request(opted_out_pod))

    assert verdict.decision == Decision.DENY
    assert verdict.allowed is False
    assert verdict.patch is None
    assert "no-steal" in verdict.status.message
    assert "team-a/web-0" in verdict.status.message


def test_validate_marked_deployment_denied(validating_controller, deployment):
    deployment["metadata"]["labels"]["no-steal"] = "TRUE"

    verdict = validating_controller.decide(create_request(deployment, resource=DEPLOYMENT_GVR))

    assert verdict.decision == Decision.DENY
    assert "Deployment team-a/api" in verdict.status.message


def test_validate_unmarked_deployment_allowed(validating_controller, deployment):
    verdict = validating_controller.decide(
        create_request(deployment, resource=DEPLOYMENT_GVR, operation="UPDATE")
    )

    assert verdict.decision == Decision.ALLOW


def test_validate_ignores_namespace_policy(validating_controller, opted_out_pod):
    opted_out_pod["metadata"]["namespace"] = "kube-system"

    verdict = validating_controller.decide(create_request(opted_out_pod))

    assert verdict.decision == Decision.DENY


def test_validate_malformed_object(validating_controller):
    verdict = validating_controller.decide(create_request(orjson.dumps({"metadata": {"labels": {"a": 1}}})))

    assert verdict.decision == Decision.DENY
    assert verdict.status.message.startswith("Failed to decode pods")


def test_validate_other_resource(validating_controller):
    verdict = validating_controller.decide(
        create_request({}, resource={"group": "", "version": "v1", "resource": "services"})
    )

    assert verdict.decision == Decision.NO_OPINION
