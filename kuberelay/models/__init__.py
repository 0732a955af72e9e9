"""Core data structures for kuberelay."""

from kuberelay.models.config import KubeRelayConfig
from kuberelay.models.envelope import CloudEventData, CloudEventMessage
from kuberelay.models.events import ChangeEvent, ChangeKind, DeletedFinalStateUnknown
from kuberelay.models.resources import (
    GroupVersionKind,
    GroupVersionResource,
    OwnerReference,
    get_key,
    object_key,
    owner_references,
    parse_resource_arg,
)

__all__ = [
    "ChangeEvent",
    "ChangeKind",
    "CloudEventData",
    "CloudEventMessage",
    "DeletedFinalStateUnknown",
    "GroupVersionKind",
    "GroupVersionResource",
    "KubeRelayConfig",
    "OwnerReference",
    "get_key",
    "object_key",
    "owner_references",
    "parse_resource_arg",
]
