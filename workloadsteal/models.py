from enum import StrEnum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class Operation(StrEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    CONNECT = "CONNECT"


class PatchType(StrEnum):
    JSONPatch = "JSONPatch"


class PatchOperation(StrEnum):
    ADD = "add"
    REMOVE = "remove"
    REPLACE = "replace"
    MOVE = "move"
    COPY = "copy"
    TEST = "test"


class Decision(StrEnum):
    ALLOW = "allow"
    DENY = "deny"
    MUTATE = "mutate"
    # The engine has nothing to say about the request; rendered as an allow.
    NO_OPINION = "no-opinion"


class WatchEventType(StrEnum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"
    ERROR = "ERROR"


class GroupVersionResource(BaseModel):
    model_config = ConfigDict(frozen=True)

    group: str = ""
    version: str
    resource: str

    def __str__(self) -> str:
        return "/".join(part for part in (self.group, self.version, self.resource) if part)


POD_RESOURCE = GroupVersionResource(group="", version="v1", resource="pods")
DEPLOYMENT_RESOURCE = GroupVersionResource(group="apps", version="v1", resource="deployments")


class PatchOp(BaseModel):
    """A single RFC 6902 operation. ``value`` is omitted from dumps when unset."""

    op: PatchOperation
    path: str
    value: Any = None

    def as_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_unset=True)


class AdmissionRequest(BaseModel):
    """Decoded admission request handed to the decision engine."""

    model_config = ConfigDict(frozen=True)

    uid: str = Field(min_length=1)
    resource: GroupVersionResource
    operation: Operation
    object: bytes
    namespace: Optional[str] = None


class VerdictStatus(BaseModel):
    message: str
    code: Optional[int] = None


class AdmissionVerdict(BaseModel):
    uid: str = Field(min_length=1)
    decision: Decision
    patch: Optional[list[PatchOp]] = None
    patch_type: Optional[PatchType] = None
    status: Optional[VerdictStatus] = None

    @property
    def allowed(self) -> bool:
        return self.decision != Decision.DENY

    @model_validator(mode="after")
    def validate_patch(self):
        if self.decision == Decision.MUTATE:
            if self.patch is None or self.patch_type is None:
                raise ValueError("a mutating verdict requires a patch and a patch type")
        elif self.patch is not None or self.patch_type is not None:
            raise ValueError(f"a {self.decision} verdict cannot carry a patch")
        return self

    @classmethod
    def allow(cls, uid: str, message: Optional[str] = None) -> "AdmissionVerdict":
        status = VerdictStatus(message=message) if message else None
        return cls(uid=uid, decision=Decision.ALLOW, status=status)

    @classmethod
    def deny(cls, uid: str, message: str, code: Optional[int] = None) -> "AdmissionVerdict":
        return cls(uid=uid, decision=Decision.DENY, status=VerdictStatus(message=message, code=code))

    @classmethod
    def mutate(cls, uid: str, patch: list[PatchOp]) -> "AdmissionVerdict":
        return cls(uid=uid, decision=Decision.MUTATE, patch=patch, patch_type=PatchType.JSONPatch)

    @classmethod
    def no_opinion(cls, uid: str) -> "AdmissionVerdict":
        return cls(uid=uid, decision=Decision.NO_OPINION)


class ObjectMeta(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    namespace: Optional[str] = None
    labels: Optional[dict[str, str]] = None


class PodSpec(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    node_selector: Optional[dict[str, str]] = Field(default=None, alias="nodeSelector")


class WorkloadObject(BaseModel):
    """
    A Kubernetes workload as admitted. Fields the agent does not inspect are
    kept as extras so dumps reproduce the full object.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    api_version: Optional[str] = Field(default=None, alias="apiVersion")
    kind: Optional[str] = None
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)

    @property
    def name(self) -> Optional[str]:
        return self.metadata.name

    @property
    def namespace(self) -> Optional[str]:
        return self.metadata.namespace

    @property
    def labels(self) -> dict[str, str]:
        return self.metadata.labels or {}

    def to_json_tree(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Pod(WorkloadObject):
    spec: PodSpec = Field(default_factory=PodSpec)


class Deployment(WorkloadObject):
    spec: Optional[dict[str, Any]] = None


class NotificationMessage(BaseModel):
    topic: str
    payload: bytes
