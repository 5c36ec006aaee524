"""
Validation of Contour specs. The validator is a pure function of the candidate
Contour and, on update, the previous one. It is used both by the admission
webhook and by the reconciler before anything is rendered.
"""

# Standard
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional
import re

# Third Party
from kubernetes.utils import parse_quantity

# First Party
import alog

# Local
from .. import config, constants
from ..model import AWSLoadBalancerType, ExposureMode, LoadBalancerProvider, LoadBalancerScope

log = alog.use_channel("VALID")

## Public ######################################################################


@dataclass
class AdmissionResult:
    """The verdict for a candidate Contour"""

    allowed: bool
    reason: str = ""
    violations: List[str] = field(default_factory=list)

    @classmethod
    def from_violations(cls, violations: List[str]) -> "AdmissionResult":
        if violations:
            return cls(allowed=False, reason="; ".join(violations), violations=violations)
        return cls(allowed=True)


def validate(
    candidate: dict,
    previous: Optional[dict] = None,
    max_replicas: Optional[int] = None,
) -> AdmissionResult:
    """Validate a Contour and, if previous is given, the transition to it

    Args:
        candidate:  dict
            The raw Contour being admitted
        previous:  Optional[dict]
            The raw Contour being replaced on update
        max_replicas:  Optional[int]
            Upper bound on spec.replicas. Defaults to the configured bound.

    Returns:
        result:  AdmissionResult
            allowed=False with the reasons if any rule is violated
    """
    if max_replicas is None:
        max_replicas = config.max_replicas
    spec = (candidate or {}).get("spec") or {}
    violations = []
    if not isinstance(spec, dict):
        return AdmissionResult.from_violations(["spec must be an object"])

    _check_unknown_fields(spec, _SPEC_FIELDS, "spec", violations)
    _check_replicas(spec, max_replicas, violations)
    mode = _check_exposure(spec, violations)
    _check_node_ports(spec, mode, violations)
    _check_load_balancer(spec, mode, violations)
    _check_node_placement(spec.get("nodePlacement"), violations)
    _check_resources(spec.get("resources"), violations)
    _check_namespace(spec.get("namespace"), violations)
    _check_optional_types(spec, violations)
    if previous is not None:
        _check_transition(spec, (previous.get("spec") or {}), violations)

    result = AdmissionResult.from_violations(violations)
    if not result.allowed:
        log.debug("Rejected Contour: %s", result.reason)
    return result


## Field rules #################################################################

_SPEC_FIELDS = {
    "replicas",
    "exposureMode",
    "loadBalancer",
    "nodePorts",
    "nodePlacement",
    "resources",
    "namespace",
    "ingressClassName",
    "enableExternalNameService",
}
_LOAD_BALANCER_FIELDS = {"scope", "provider", "aws"}
_AWS_FIELDS = {"type"}
_NODE_PORT_FIELDS = {"name", "portNumber"}
_NODE_PORT_NAMES = {"http", "https"}
_COMPONENTS = {"contour", "envoy"}
_PLACEMENT_FIELDS = {"nodeSelector", "tolerations"}
_TOLERATION_FIELDS = {"key", "operator", "value", "effect", "tolerationSeconds"}
_TOLERATION_OPERATORS = {"Exists", "Equal"}
_TOLERATION_EFFECTS = {"", "NoSchedule", "PreferNoSchedule", "NoExecute"}
_RESOURCE_FIELDS = {"requests", "limits"}
_NAMESPACE_FIELDS = {"name", "removeOnDeletion"}
_PROTECTED_NAMESPACES = {"default"}
_PROTECTED_NAMESPACE_PREFIX = "kube-"
_DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


def _enum_values(enum_class) -> List[str]:
    return [member.value for member in enum_class]


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _check_unknown_fields(value: dict, allowed: set, path: str, violations: List[str]):
    for key in sorted(set(value) - allowed):
        violations.append(f"{path}.{key}: unknown field")


def _check_object(value: Any, path: str, violations: List[str]) -> bool:
    if value is None:
        return False
    if not isinstance(value, dict):
        violations.append(f"{path}: must be an object")
        return False
    return True


def _check_replicas(spec: dict, max_replicas: int, violations: List[str]):
    if "replicas" not in spec:
        return
    replicas = spec["replicas"]
    if not _is_int(replicas):
        violations.append("spec.replicas: must be an integer")
    elif replicas < 0:
        violations.append("spec.replicas: must not be negative")
    elif replicas > max_replicas:
        violations.append(f"spec.replicas: must not exceed {max_replicas}")


def _check_exposure(spec: dict, violations: List[str]) -> Optional[ExposureMode]:
    raw_mode = spec.get("exposureMode", ExposureMode.LOAD_BALANCER.value)
    if raw_mode not in _enum_values(ExposureMode):
        violations.append(
            f"spec.exposureMode: must be one of {_enum_values(ExposureMode)}"
        )
        return None
    return ExposureMode(raw_mode)


def _check_node_ports(spec: dict, mode: Optional[ExposureMode], violations: List[str]):
    if spec.get("nodePorts") is None:
        return
    node_ports = spec["nodePorts"]
    if mode is not None and mode != ExposureMode.NODE_PORT:
        violations.append("spec.nodePorts: only allowed with exposureMode NodePort")
    if not isinstance(node_ports, list):
        violations.append("spec.nodePorts: must be a list")
        return
    names, numbers = set(), set()
    for idx, port in enumerate(node_ports):
        path = f"spec.nodePorts[{idx}]"
        if not isinstance(port, dict):
            violations.append(f"{path}: must be an object")
            continue
        _check_unknown_fields(port, _NODE_PORT_FIELDS, path, violations)
        name = port.get("name")
        if name not in _NODE_PORT_NAMES:
            violations.append(f"{path}.name: must be one of {sorted(_NODE_PORT_NAMES)}")
        elif name in names:
            violations.append(f"{path}.name: duplicate port name {name}")
        names.add(name)
        if "portNumber" not in port:
            continue
        number = port["portNumber"]
        if not _is_int(number) or not (
            constants.NODE_PORT_MIN <= number <= constants.NODE_PORT_MAX
        ):
            violations.append(
                f"{path}.portNumber: must be an integer in "
                f"{constants.NODE_PORT_MIN}-{constants.NODE_PORT_MAX}"
            )
        elif number in numbers:
            violations.append(f"{path}.portNumber: duplicate port number {number}")
        numbers.add(number)


def _check_load_balancer(
    spec: dict, mode: Optional[ExposureMode], violations: List[str]
):
    settings = spec.get("loadBalancer")
    if not _check_object(settings, "spec.loadBalancer", violations):
        return
    if mode is not None and mode != ExposureMode.LOAD_BALANCER:
        violations.append("spec.loadBalancer: only allowed with exposureMode LoadBalancer")
    _check_unknown_fields(settings, _LOAD_BALANCER_FIELDS, "spec.loadBalancer", violations)

    scope = settings.get("scope", LoadBalancerScope.EXTERNAL.value)
    if scope not in _enum_values(LoadBalancerScope):
        violations.append(
            f"spec.loadBalancer.scope: must be one of {_enum_values(LoadBalancerScope)}"
        )
    provider = settings.get("provider")
    if provider is not None and provider not in _enum_values(LoadBalancerProvider):
        violations.append(
            "spec.loadBalancer.provider: must be one of "
            f"{_enum_values(LoadBalancerProvider)}"
        )
    if scope == LoadBalancerScope.INTERNAL.value and provider is None:
        violations.append("spec.loadBalancer.provider: required for Internal scope")

    aws = settings.get("aws")
    if _check_object(aws, "spec.loadBalancer.aws", violations):
        if provider != LoadBalancerProvider.AWS.value:
            violations.append("spec.loadBalancer.aws: only allowed with provider AWS")
        _check_unknown_fields(aws, _AWS_FIELDS, "spec.loadBalancer.aws", violations)
        if aws.get("type", AWSLoadBalancerType.CLASSIC.value) not in _enum_values(
            AWSLoadBalancerType
        ):
            violations.append(
                "spec.loadBalancer.aws.type: must be one of "
                f"{_enum_values(AWSLoadBalancerType)}"
            )


def _check_node_placement(placement: Any, violations: List[str]):
    if not _check_object(placement, "spec.nodePlacement", violations):
        return
    _check_unknown_fields(placement, _COMPONENTS, "spec.nodePlacement", violations)
    for component in sorted(_COMPONENTS):
        path = f"spec.nodePlacement.{component}"
        settings = placement.get(component)
        if not _check_object(settings, path, violations):
            continue
        _check_unknown_fields(settings, _PLACEMENT_FIELDS, path, violations)
        selector = settings.get("nodeSelector")
        if _check_object(selector, f"{path}.nodeSelector", violations):
            for key, value in selector.items():
                if not isinstance(key, str) or not isinstance(value, str):
                    violations.append(f"{path}.nodeSelector: keys and values must be strings")
                    break
        tolerations = settings.get("tolerations")
        if tolerations is None:
            continue
        if not isinstance(tolerations, list):
            violations.append(f"{path}.tolerations: must be a list")
            continue
        for idx, toleration in enumerate(tolerations):
            _check_toleration(toleration, f"{path}.tolerations[{idx}]", violations)


def _check_toleration(toleration: Any, path: str, violations: List[str]):
    if not isinstance(toleration, dict):
        violations.append(f"{path}: must be an object")
        return
    _check_unknown_fields(toleration, _TOLERATION_FIELDS, path, violations)
    operator = toleration.get("operator", "Equal")
    if operator not in _TOLERATION_OPERATORS:
        violations.append(f"{path}.operator: must be one of {sorted(_TOLERATION_OPERATORS)}")
    if operator == "Exists" and toleration.get("value"):
        violations.append(f"{path}.value: must be empty when operator is Exists")
    if operator == "Equal" and not toleration.get("key"):
        violations.append(f"{path}.key: required when operator is Equal")
    effect = toleration.get("effect", "")
    if effect not in _TOLERATION_EFFECTS:
        violations.append(f"{path}.effect: must be one of {sorted(_TOLERATION_EFFECTS)}")
    if "tolerationSeconds" in toleration:
        if not _is_int(toleration["tolerationSeconds"]):
            violations.append(f"{path}.tolerationSeconds: must be an integer")
        elif effect != "NoExecute":
            violations.append(f"{path}.tolerationSeconds: only allowed with NoExecute")


def _check_resources(resources: Any, violations: List[str]):
    if not _check_object(resources, "spec.resources", violations):
        return
    _check_unknown_fields(resources, _COMPONENTS, "spec.resources", violations)
    for component in sorted(_COMPONENTS):
        path = f"spec.resources.{component}"
        settings = resources.get(component)
        if not _check_object(settings, path, violations):
            continue
        _check_unknown_fields(settings, _RESOURCE_FIELDS, path, violations)
        parsed: Dict[str, Dict[str, Decimal]] = {}
        for section in sorted(_RESOURCE_FIELDS):
            quantities = settings.get(section)
            if not _check_object(quantities, f"{path}.{section}", violations):
                continue
            parsed[section] = {}
            for name, raw in quantities.items():
                quantity = _parse_quantity(raw)
                if quantity is None:
                    violations.append(f"{path}.{section}.{name}: invalid quantity {raw!r}")
                elif quantity < 0:
                    violations.append(f"{path}.{section}.{name}: must not be negative")
                else:
                    parsed[section][name] = quantity
        for name, request in parsed.get("requests", {}).items():
            limit = parsed.get("limits", {}).get(name)
            if limit is not None and request > limit:
                violations.append(f"{path}.requests.{name}: must not exceed the limit")


def _parse_quantity(raw: Any) -> Optional[Decimal]:
    if isinstance(raw, bool) or not isinstance(raw, (str, int, float)):
        return None
    try:
        return parse_quantity(raw)
    except (ValueError, ArithmeticError):
        return None


def _check_namespace(namespace: Any, violations: List[str]):
    if not _check_object(namespace, "spec.namespace", violations):
        return
    _check_unknown_fields(namespace, _NAMESPACE_FIELDS, "spec.namespace", violations)
    name = namespace.get("name", constants.DEFAULT_OPERAND_NAMESPACE)
    if not isinstance(name, str) or len(name) > 63 or not _DNS_LABEL.match(name):
        violations.append("spec.namespace.name: must be a valid DNS label")
        return
    remove = namespace.get("removeOnDeletion", False)
    if not isinstance(remove, bool):
        violations.append("spec.namespace.removeOnDeletion: must be a boolean")
    elif remove and (
        name in _PROTECTED_NAMESPACES or name.startswith(_PROTECTED_NAMESPACE_PREFIX)
    ):
        violations.append(
            f"spec.namespace.removeOnDeletion: not allowed for namespace {name}"
        )


def _check_optional_types(spec: dict, violations: List[str]):
    ingress_class = spec.get("ingressClassName")
    if ingress_class is not None and (
        not isinstance(ingress_class, str) or not ingress_class
    ):
        violations.append("spec.ingressClassName: must be a non-empty string")
    external_name = spec.get("enableExternalNameService")
    if external_name is not None and not isinstance(external_name, bool):
        violations.append("spec.enableExternalNameService: must be a boolean")


def _check_transition(spec: dict, previous_spec: dict, violations: List[str]):
    """Rules that depend on the previous spec"""

    def namespace_name(raw_spec: dict) -> Any:
        namespace = raw_spec.get("namespace")
        if not isinstance(namespace, dict):
            return constants.DEFAULT_OPERAND_NAMESPACE
        return namespace.get("name") or constants.DEFAULT_OPERAND_NAMESPACE

    if namespace_name(spec) != namespace_name(previous_spec):
        violations.append("spec.namespace.name: is immutable")
