"""Helpers for unstructured Kubernetes objects and resource identifiers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class GroupVersionKind:
    group: str
    version: str
    kind: str

    def __str__(self) -> str:
        gv = f"{self.group}/{self.version}" if self.group else self.version
        return f"{gv}, Kind={self.kind}"


@dataclass(frozen=True)
class GroupVersionResource:
    """A watchable resource type, e.g. ``deployments`` in ``apps/v1``."""

    group: str
    version: str
    resource: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    def __str__(self) -> str:
        return f"{self.resource}.{self.version}.{self.group}" if self.group else f"{self.resource}.{self.version}"


@dataclass(frozen=True)
class OwnerReference:
    """A pointer-by-name from an object to a putative parent."""

    api_version: str
    kind: str
    name: str
    uid: str = ""
    controller: bool = False

    @property
    def key(self) -> str:
        """Uniqueness key; references carry no guaranteed UID."""
        return f"{self.api_version}/{self.kind}/{self.name}"

    def __str__(self) -> str:
        return self.key


def parse_resource_arg(arg: str) -> GroupVersionResource:
    """Parse ``resource.version.group`` (or ``resource.version`` for core).

    Examples:
        ``deployments.v1.apps``      -> apps/v1 deployments
        ``events.v1.events.k8s.io``  -> events.k8s.io/v1 events
        ``pods.v1``                  -> v1 pods

    Raises:
        ValueError: if the argument has no version segment.
    """
    parts = arg.strip().split(".")
    if len(parts) < 2 or not all(parts[:2]):
        raise ValueError(f"cannot parse resource {arg!r}; expected resource.version[.group]")
    resource, version = parts[0].lower(), parts[1]
    group = ".".join(parts[2:])
    if group and not all(parts[2:]):
        raise ValueError(f"cannot parse resource {arg!r}; empty group segment")
    return GroupVersionResource(group=group, version=version, resource=resource)


def is_object(obj: object) -> bool:
    """Return True if *obj* looks like an unstructured Kubernetes body."""
    return isinstance(obj, dict) and isinstance(obj.get("metadata"), dict)


def group_version_kind(obj: dict[str, Any]) -> GroupVersionKind:
    api_version = str(obj.get("apiVersion", ""))
    group, _, version = api_version.rpartition("/")
    return GroupVersionKind(group=group, version=version, kind=str(obj.get("kind", "")))


def get_key(gvk: GroupVersionKind, name: str, namespace: str) -> str:
    """Render the composite identity ``group/version/kind/namespace/name``."""
    return f"{gvk.group}/{gvk.version}/{gvk.kind}/{namespace}/{name}"


def object_key(obj: dict[str, Any]) -> str:
    metadata = obj.get("metadata") or {}
    return get_key(
        group_version_kind(obj),
        str(metadata.get("name", "")),
        str(metadata.get("namespace") or ""),
    )


def object_name(obj: dict[str, Any]) -> str:
    return str((obj.get("metadata") or {}).get("name", ""))


def object_namespace(obj: dict[str, Any]) -> str:
    return str((obj.get("metadata") or {}).get("namespace") or "")


def owner_references(obj: dict[str, Any]) -> list[OwnerReference]:
    """Return the ownerReferences of *obj*; malformed entries are skipped."""
    refs = (obj.get("metadata") or {}).get("ownerReferences") or []
    result: list[OwnerReference] = []
    for ref in refs:
        if not isinstance(ref, dict):
            continue
        result.append(
            OwnerReference(
                api_version=str(ref.get("apiVersion", "")),
                kind=str(ref.get("kind", "")),
                name=str(ref.get("name", "")),
                uid=str(ref.get("uid", "")),
                controller=bool(ref.get("controller", False)),
            )
        )
    return result
