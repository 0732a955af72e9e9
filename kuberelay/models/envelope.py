"""Outbound CloudEvents-style envelope for change notifications."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

SPEC_VERSION = "1.0"
EVENT_TYPE = "KUBERNETES_TOPOLOGY_CHANGE"
CONTENT_TYPE = "application/json"


@dataclass(frozen=True)
class CloudEventData:
    """Payload describing the changed object."""

    operation: str  # create | update | delete
    kind: str
    api_version: str
    obj: dict[str, Any] | None
    old_obj: dict[str, Any] | None = None
    cluster_uid: str = ""
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "kind": self.kind,
            "clusterUid": self.cluster_uid,
            "description": self.description,
            "apiVersion": self.api_version,
            "obj": self.obj,
            "oldObj": self.old_obj,
        }


@dataclass(frozen=True)
class CloudEventMessage:
    """Envelope wrapping a change for the remote sink.

    ``time`` is when the message was prepared, not when the change happened.
    """

    source: str
    subject: str
    id: str
    time: datetime
    data: CloudEventData
    specversion: str = SPEC_VERSION
    type: str = EVENT_TYPE
    datacontenttype: str = CONTENT_TYPE

    def to_dict(self) -> dict[str, Any]:
        return {
            "specversion": self.specversion,
            "type": self.type,
            "source": self.source,
            "subject": self.subject,
            "id": self.id,
            "time": self.time.isoformat(),
            "datacontenttype": self.datacontenttype,
            "data": self.data.to_dict(),
        }
