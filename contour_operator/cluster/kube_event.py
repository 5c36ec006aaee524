"""
Helper module to define shared types related to Kube Events
"""

# Standard
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

# Local
from ..model import ObjectIdentity


class KubeEventType(Enum):
    """Enum for all possible kubernetes event types"""

    DELETED = "DELETED"
    MODIFIED = "MODIFIED"
    ADDED = "ADDED"


@dataclass
class KubeWatchEvent:
    """DataClass containing the type, raw object, and timestamp of a
    particular event"""

    type: KubeEventType
    resource: dict
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def identity(self) -> ObjectIdentity:
        return ObjectIdentity.from_body(self.resource)

    @property
    def resource_version(self) -> str:
        return self.resource.get("metadata", {}).get("resourceVersion")
