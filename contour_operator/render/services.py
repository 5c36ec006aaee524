"""
The contour (xDS) and envoy (ingress) services
"""

# Standard
from typing import Dict

# Local
from .. import constants
from ..model import (
    AWSLoadBalancerType,
    Contour,
    ExposureMode,
    KubeObject,
    LoadBalancerProvider,
    LoadBalancerScope,
    Service,
)
from .common import (
    CONTOUR_COMPONENT,
    CONTOUR_NAME,
    ENVOY_COMPONENT,
    ENVOY_NAME,
    object_meta,
    operand_namespace,
    selector_labels,
)

# Provider specific load balancer annotations
AWS_BACKEND_PROTOCOL_ANNOTATION = "service.beta.kubernetes.io/aws-load-balancer-backend-protocol"
AWS_LB_TYPE_ANNOTATION = "service.beta.kubernetes.io/aws-load-balancer-type"
AWS_INTERNAL_ANNOTATION = "service.beta.kubernetes.io/aws-load-balancer-internal"
AZURE_INTERNAL_ANNOTATION = "service.beta.kubernetes.io/azure-load-balancer-internal"
GCP_INTERNAL_ANNOTATION = "cloud.google.com/load-balancer-type"


def render_contour_service(contour: Contour) -> KubeObject:
    namespace = operand_namespace(contour)
    return Service(
        {
            "metadata": object_meta(contour, CONTOUR_NAME, namespace, CONTOUR_COMPONENT),
            "spec": {
                "type": "ClusterIP",
                "ports": [
                    {
                        "name": "xds",
                        "port": constants.XDS_PORT,
                        "protocol": "TCP",
                        "targetPort": constants.XDS_PORT,
                    }
                ],
                "selector": selector_labels(contour, CONTOUR_NAME),
                "sessionAffinity": "None",
            },
        }
    )


def render_envoy_service(contour: Contour) -> KubeObject:
    """The envoy service. Its type follows the exposure mode."""
    namespace = operand_namespace(contour)
    spec = contour.spec
    mode = spec.exposure_mode

    explicit_node_ports = {}
    if mode == ExposureMode.NODE_PORT:
        explicit_node_ports = {
            port.name: port.port_number for port in spec.node_ports if port.port_number
        }

    ports = []
    for name, port, target in [
        ("http", constants.HTTP_PORT, constants.ENVOY_HTTP_PORT),
        ("https", constants.HTTPS_PORT, constants.ENVOY_HTTPS_PORT),
    ]:
        port_spec = {"name": name, "port": port, "protocol": "TCP", "targetPort": target}
        if name in explicit_node_ports:
            port_spec["nodePort"] = explicit_node_ports[name]
        ports.append(port_spec)

    service_spec = {
        "type": mode.value,
        "ports": ports,
        "selector": selector_labels(contour, ENVOY_NAME),
    }
    if mode in [ExposureMode.LOAD_BALANCER, ExposureMode.NODE_PORT]:
        service_spec["externalTrafficPolicy"] = "Local"

    annotations = None
    if mode == ExposureMode.LOAD_BALANCER:
        annotations = load_balancer_annotations(contour)

    return Service(
        {
            "metadata": object_meta(
                contour, ENVOY_NAME, namespace, ENVOY_COMPONENT, annotations=annotations
            ),
            "spec": service_spec,
        }
    )


def load_balancer_annotations(contour: Contour) -> Dict[str, str]:
    """Annotations that configure the cloud load balancer for the given
    provider and scope
    """
    settings = contour.spec.load_balancer
    annotations = {}
    internal = settings.scope == LoadBalancerScope.INTERNAL
    if settings.provider == LoadBalancerProvider.AWS:
        annotations[AWS_BACKEND_PROTOCOL_ANNOTATION] = "tcp"
        if settings.aws_type == AWSLoadBalancerType.NLB:
            annotations[AWS_LB_TYPE_ANNOTATION] = "nlb"
        if internal:
            annotations[AWS_INTERNAL_ANNOTATION] = "true"
    elif settings.provider == LoadBalancerProvider.AZURE and internal:
        annotations[AZURE_INTERNAL_ANNOTATION] = "true"
    elif settings.provider == LoadBalancerProvider.GCP and internal:
        annotations[GCP_INTERNAL_ANNOTATION] = "Internal"
    return annotations
