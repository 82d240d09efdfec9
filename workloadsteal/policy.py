"""
Namespace and label policies deciding whether a workload may be stolen.
"""

from typing import Iterable, Mapping, Optional


# Namespaces owned by the cluster itself, never eligible regardless of configuration.
BUILTIN_PROTECTED_NAMESPACES = frozenset(
    {
        "default",
        "kube-system",
        "kube-public",
        "kube-node-lease",
        "kube-admission",
        "kube-proxy",
        "kube-controller-manager",
        "kube-scheduler",
        "kube-dns",
    }
)


def protected_namespaces(ignore_list: Iterable[str]) -> frozenset[str]:
    """Union of the built-in protected namespaces and the configured ignore list."""
    return BUILTIN_PROTECTED_NAMESPACES | frozenset(ignore_list)


def is_excluded(namespace: Optional[str], ignore_list: Iterable[str]) -> bool:
    """
    Check whether a namespace is excluded from stealing.

    The union is rebuilt on every call so that changes to the ignore list apply
    without a restart.
    """
    return (namespace or "") in protected_namespaces(ignore_list)


def is_marked(labels: Optional[Mapping[str, str]], marker_key: str) -> bool:
    """
    Check whether a label map carries the marker label.

    A missing key and an explicit, case-insensitive "false" value both mean
    "not marked".
    """
    value = (labels or {}).get(marker_key)
    if value is None:
        return False
    return value.lower() != "false"
