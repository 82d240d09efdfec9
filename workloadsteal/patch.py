"""
JSON patch synthesis between an original object and its modified copy.

The diff never emits ``remove`` operations: a map that lost keys, a node whose
type changed, or a list that differs is replaced as a whole. New subtrees are
added in a single operation, so parents are always written before children and
the patch stays valid when applied strictly in order, or applied twice.
"""

from typing import Any, Mapping, Sequence, Union

import jsonpatch
import jsonpointer
import orjson
from pydantic_core import PydanticSerializationError

from workloadsteal.exceptions import PatchSynthesisError
from workloadsteal.models import PatchOp, PatchOperation, WorkloadObject


Document = Union[WorkloadObject, Mapping[str, Any]]


def escape_token(token: str) -> str:
    """Escape a key for use as a JSON pointer reference token (RFC 6901)."""
    return token.replace("~", "~0").replace("/", "~1")


def _as_tree(obj: Document, name: str) -> Any:
    try:
        if isinstance(obj, WorkloadObject):
            data = obj.to_json_tree()
        else:
            data = obj
        return orjson.loads(orjson.dumps(data))
    except (TypeError, PydanticSerializationError) as exc:
        raise PatchSynthesisError(f"Failed to serialize {name} object: {exc}") from exc


def _equal(left: Any, right: Any) -> bool:
    # JSON distinguishes true from 1, Python equality does not.
    if type(left) is not type(right):
        return False
    if isinstance(left, dict):
        return left.keys() == right.keys() and all(_equal(left[key], right[key]) for key in left)
    if isinstance(left, list):
        return len(left) == len(right) and all(_equal(a, b) for a, b in zip(left, right))
    return left == right


def _diff_node(source: Any, target: Any, path: str, ops: list[PatchOp]) -> None:
    if _equal(source, target):
        return

    if isinstance(source, dict) and isinstance(target, dict) and source.keys() <= target.keys():
        for key, value in target.items():
            child = f"{path}/{escape_token(key)}"
            if key in source:
                _diff_node(source[key], value, child, ops)
            else:
                ops.append(PatchOp(op=PatchOperation.ADD, path=child, value=value))
        return

    ops.append(PatchOp(op=PatchOperation.REPLACE, path=path, value=target))


def apply(document: Any, ops: Sequence[PatchOp]) -> Any:
    """Apply ``ops`` to a copy of ``document`` and return the result."""
    return jsonpatch.apply_patch(document, [op.as_dict() for op in ops], in_place=False)


def diff(original: Document, modified: Document) -> list[PatchOp]:
    """
    Compute the ordered patch transforming ``original`` into ``modified``.

    Raises:
        PatchSynthesisError: either document cannot be serialized, or the
            computed patch does not reproduce ``modified``.
    """
    source = _as_tree(original, "original")
    target = _as_tree(modified, "modified")

    ops: list[PatchOp] = []
    _diff_node(source, target, "", ops)

    try:
        result = apply(source, ops)
    except (jsonpatch.JsonPatchException, jsonpointer.JsonPointerException) as exc:
        raise PatchSynthesisError(f"Failed to create patch: {exc}") from exc
    if not _equal(result, target):
        raise PatchSynthesisError("Failed to create patch: result does not match the modified object")

    return ops
