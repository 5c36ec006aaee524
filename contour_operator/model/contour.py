"""
Typed representation of the Contour custom resource. The spec dataclasses are
parsed from the raw dict with defaults applied. Parsing assumes the spec has
passed admission validation.
"""

# Standard
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional
import copy

# Local
from .. import constants
from .identity import ReconcileKey

## Enums #######################################################################


class ExposureMode(Enum):
    """How the Envoy fleet is exposed outside the cluster"""

    LOAD_BALANCER = "LoadBalancer"
    NODE_PORT = "NodePort"
    CLUSTER_IP = "ClusterIP"


class LoadBalancerScope(Enum):
    EXTERNAL = "External"
    INTERNAL = "Internal"


class LoadBalancerProvider(Enum):
    AWS = "AWS"
    AZURE = "Azure"
    GCP = "GCP"


class AWSLoadBalancerType(Enum):
    CLASSIC = "Classic"
    NLB = "NLB"


## Spec ########################################################################


@dataclass
class LoadBalancerSettings:
    scope: LoadBalancerScope = LoadBalancerScope.EXTERNAL
    provider: Optional[LoadBalancerProvider] = None
    aws_type: AWSLoadBalancerType = AWSLoadBalancerType.CLASSIC

    @classmethod
    def from_dict(cls, raw: Optional[dict]) -> "LoadBalancerSettings":
        raw = raw or {}
        provider = raw.get("provider")
        return cls(
            scope=LoadBalancerScope(raw.get("scope", LoadBalancerScope.EXTERNAL.value)),
            provider=LoadBalancerProvider(provider) if provider else None,
            aws_type=AWSLoadBalancerType(
                (raw.get("aws") or {}).get("type", AWSLoadBalancerType.CLASSIC.value)
            ),
        )


@dataclass
class NodePort:
    name: str
    port_number: Optional[int] = None


@dataclass
class NodePlacement:
    node_selector: Dict[str, str] = field(default_factory=dict)
    tolerations: List[dict] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Optional[dict]) -> "NodePlacement":
        raw = raw or {}
        return cls(
            node_selector=dict(raw.get("nodeSelector") or {}),
            tolerations=copy.deepcopy(raw.get("tolerations") or []),
        )


@dataclass
class ResourceRequirements:
    requests: Dict[str, str] = field(default_factory=dict)
    limits: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Optional[dict]) -> "ResourceRequirements":
        raw = raw or {}
        return cls(
            requests=dict(raw.get("requests") or {}),
            limits=dict(raw.get("limits") or {}),
        )

    def to_dict(self) -> dict:
        out = {}
        if self.requests:
            out["requests"] = dict(self.requests)
        if self.limits:
            out["limits"] = dict(self.limits)
        return out


@dataclass
class NamespaceSettings:
    name: str = constants.DEFAULT_OPERAND_NAMESPACE
    remove_on_deletion: bool = False


@dataclass
class ContourSpec:
    """Parsed Contour spec with defaults applied"""

    replicas: int = 2
    exposure_mode: ExposureMode = ExposureMode.LOAD_BALANCER
    load_balancer: LoadBalancerSettings = field(default_factory=LoadBalancerSettings)
    node_ports: List[NodePort] = field(default_factory=list)
    contour_placement: NodePlacement = field(default_factory=NodePlacement)
    envoy_placement: NodePlacement = field(default_factory=NodePlacement)
    contour_resources: ResourceRequirements = field(
        default_factory=ResourceRequirements
    )
    envoy_resources: ResourceRequirements = field(default_factory=ResourceRequirements)
    namespace: NamespaceSettings = field(default_factory=NamespaceSettings)
    ingress_class_name: Optional[str] = None
    enable_external_name_service: bool = False

    @classmethod
    def from_dict(cls, raw: Optional[dict]) -> "ContourSpec":
        """Parse the raw spec dict, filling in defaults for omitted fields"""
        raw = raw or {}
        placement = raw.get("nodePlacement") or {}
        resources = raw.get("resources") or {}
        namespace = raw.get("namespace") or {}
        return cls(
            replicas=raw.get("replicas", 2),
            exposure_mode=ExposureMode(
                raw.get("exposureMode", ExposureMode.LOAD_BALANCER.value)
            ),
            load_balancer=LoadBalancerSettings.from_dict(raw.get("loadBalancer")),
            node_ports=[
                NodePort(name=port["name"], port_number=port.get("portNumber"))
                for port in raw.get("nodePorts") or []
            ],
            contour_placement=NodePlacement.from_dict(placement.get("contour")),
            envoy_placement=NodePlacement.from_dict(placement.get("envoy")),
            contour_resources=ResourceRequirements.from_dict(resources.get("contour")),
            envoy_resources=ResourceRequirements.from_dict(resources.get("envoy")),
            namespace=NamespaceSettings(
                name=namespace.get("name") or constants.DEFAULT_OPERAND_NAMESPACE,
                remove_on_deletion=namespace.get("removeOnDeletion", False),
            ),
            ingress_class_name=raw.get("ingressClassName"),
            enable_external_name_service=raw.get("enableExternalNameService", False),
        )


## Contour #####################################################################


class Contour:
    """The Contour custom resource. Wraps the raw dict read from the cluster."""

    KIND = constants.CONTOUR_KIND
    API_VERSION = constants.CONTOUR_API_VERSION

    def __init__(self, body: dict):
        self._body = body
        self._body.setdefault("apiVersion", self.API_VERSION)
        self._body.setdefault("kind", self.KIND)
        self._body.setdefault("metadata", {})
        self._spec = None

    def __repr__(self) -> str:
        return f"<Contour {self.key} gen={self.generation}>"

    @property
    def body(self) -> dict:
        return self._body

    @property
    def metadata(self) -> dict:
        return self._body["metadata"]

    @property
    def key(self) -> ReconcileKey:
        return ReconcileKey.from_body(self._body)

    @property
    def name(self) -> str:
        return self.metadata.get("name")

    @property
    def namespace(self) -> str:
        return self.metadata.get("namespace")

    @property
    def uid(self) -> Optional[str]:
        return self.metadata.get("uid")

    @property
    def generation(self) -> int:
        return self.metadata.get("generation", 0)

    @property
    def resource_version(self) -> Optional[str]:
        return self.metadata.get("resourceVersion")

    @property
    def finalizers(self) -> List[str]:
        return list(self.metadata.get("finalizers") or [])

    @property
    def deletion_timestamp(self) -> Optional[str]:
        return self.metadata.get("deletionTimestamp")

    @property
    def is_deleting(self) -> bool:
        return bool(self.deletion_timestamp)

    def has_finalizer(self) -> bool:
        return constants.CONTOUR_FINALIZER in self.finalizers

    @property
    def raw_spec(self) -> dict:
        return self._body.get("spec") or {}

    @property
    def spec(self) -> ContourSpec:
        if self._spec is None:
            self._spec = ContourSpec.from_dict(self.raw_spec)
        return self._spec

    @property
    def status(self) -> dict:
        return self._body.get("status") or {}

    @property
    def conditions(self) -> List[dict]:
        return list(self.status.get("conditions") or [])

    @property
    def observed_generation(self) -> Optional[int]:
        return self.status.get("observedGeneration")
