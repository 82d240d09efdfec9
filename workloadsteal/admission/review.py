"""
AdmissionReview wire envelope exchanged with the Kubernetes API server.
"""

import base64
from typing import Any, Literal, Optional

import orjson
from pydantic import BaseModel, ConfigDict, Field, model_validator

from workloadsteal.models import (
    AdmissionRequest,
    AdmissionVerdict,
    GroupVersionResource,
    Operation,
    PatchType,
)


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionRequest
class AdmissionReviewRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    uid: str = Field(min_length=1)
    resource: GroupVersionResource
    operation: Operation
    name: Optional[str] = None
    namespace: Optional[str] = None
    object: Optional[Any] = None

    def to_admission_request(self) -> AdmissionRequest:
        return AdmissionRequest(
            uid=self.uid,
            resource=self.resource,
            operation=self.operation,
            object=orjson.dumps(self.object),
            namespace=self.namespace,
        )


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.30/#status-v1-meta
class AdmissionReviewStatus(BaseModel):
    message: str
    code: Optional[int] = None


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionResponse
class AdmissionReviewResponse(BaseModel):
    uid: str
    allowed: bool
    status: Optional[AdmissionReviewStatus] = None
    patchType: Optional[PatchType] = None
    patch: Optional[str] = None

    @model_validator(mode="after")
    def validate_model(self):
        if self.patch and not self.patchType:
            raise ValueError("missing patchType field")
        if self.patchType and not self.patch:
            raise ValueError(f"patchType is {self.patchType} but there is no patch")
        return self

    @classmethod
    def from_verdict(cls, verdict: AdmissionVerdict, uid: str) -> "AdmissionReviewResponse":
        """Render a verdict; the review uid always wins over whatever the verdict carries."""
        patch = None
        if verdict.patch is not None:
            patch = base64.b64encode(orjson.dumps([op.as_dict() for op in verdict.patch])).decode()

        status = None
        if verdict.status is not None:
            status = AdmissionReviewStatus(message=verdict.status.message, code=verdict.status.code)

        return cls(
            uid=uid,
            allowed=verdict.allowed,
            status=status,
            patchType=verdict.patch_type,
            patch=patch,
        )


# https://kubernetes.io/docs/reference/config-api/apiserver-admission.v1/#admission-k8s-io-v1-AdmissionReview
class AdmissionReview(BaseModel):
    apiVersion: Literal["admission.k8s.io/v1", "admission.k8s.io/v1beta1"] = "admission.k8s.io/v1"
    kind: Literal["AdmissionReview"] = "AdmissionReview"
    request: Optional[AdmissionReviewRequest] = None
    response: Optional[AdmissionReviewResponse] = None

    @model_validator(mode="after")
    def validate_model(self):
        if not (self.request or self.response):
            raise ValueError("must contain a request or a response")
        return self
