"""
Shared helpers for building the metadata and pod settings of rendered objects
"""

# Standard
from typing import Dict, Optional

# Local
from .. import constants
from ..model import Contour, make_owner_reference, owner_labels

# Component names
CONTOUR_COMPONENT = "contour"
ENVOY_COMPONENT = "envoy"
CERTGEN_COMPONENT = "contour-certgen"

# Fixed object names within the operand namespace
CONTOUR_NAME = "contour"
ENVOY_NAME = "envoy"
CERTGEN_NAME = "contour-certgen"
CONTOUR_CERT_SECRET = "contourcert"
ENVOY_CERT_SECRET = "envoycert"
CONTOUR_CONFIG_KEY = "contour.yaml"

# Pods run as nobody
POD_SECURITY_CONTEXT = {
    "runAsNonRoot": True,
    "runAsUser": 65534,
    "runAsGroup": 65534,
}


def operand_namespace(contour: Contour) -> str:
    return contour.spec.namespace.name


def cluster_scoped_name(contour: Contour) -> str:
    """Name for cluster scoped objects, unique per Contour"""
    return f"contour-{contour.namespace}-{contour.name}"


def image_tag(image: str) -> str:
    """Get the tag of an image reference, defaulting to latest"""
    last_part = image.rsplit("/", 1)[-1]
    if ":" in last_part:
        return last_part.rsplit(":", 1)[-1]
    return "latest"


def object_labels(contour: Contour, component: Optional[str] = None) -> Dict[str, str]:
    labels = {
        constants.APP_NAME_LABEL: "contour",
        constants.APP_INSTANCE_LABEL: contour.name,
        constants.APP_MANAGED_BY_LABEL: constants.FIELD_MANAGER,
    }
    if component:
        labels[constants.APP_COMPONENT_LABEL] = component
    labels.update(owner_labels(contour.key))
    return labels


def selector_labels(contour: Contour, app: str) -> Dict[str, str]:
    """Pod selector labels. These must never change for the life of a workload
    since selectors are immutable.
    """
    labels = {"app": app}
    labels.update(owner_labels(contour.key))
    return labels


def object_meta(
    contour: Contour,
    name: str,
    namespace: Optional[str] = None,
    component: Optional[str] = None,
    annotations: Optional[Dict[str, str]] = None,
) -> dict:
    """Build the metadata block for an owned object

    Args:
        contour:  Contour
            The owning Contour
        name:  str
            The object name
        namespace:  Optional[str]
            The object namespace, None for cluster scoped objects
        component:  Optional[str]
            The operand component the object belongs to
        annotations:  Optional[Dict[str, str]]
            Annotations to set on the object

    Returns:
        metadata:  dict
            The metadata with owner labels, plus an owner reference when the
            object shares the Contour's namespace
    """
    metadata = {"name": name, "labels": object_labels(contour, component)}
    if namespace:
        metadata["namespace"] = namespace
        if namespace == contour.namespace and contour.uid:
            metadata["ownerReferences"] = [make_owner_reference(contour.body)]
    if annotations:
        metadata["annotations"] = dict(annotations)
    return metadata


def pod_placement(placement) -> dict:
    """Pod spec fields for a NodePlacement"""
    out = {}
    if placement.node_selector:
        out["nodeSelector"] = dict(sorted(placement.node_selector.items()))
    if placement.tolerations:
        out["tolerations"] = [dict(tol) for tol in placement.tolerations]
    return out


def field_ref_env(name: str, field_path: str) -> dict:
    """Container env var sourced from a pod field"""
    return {
        "name": name,
        "valueFrom": {"fieldRef": {"apiVersion": "v1", "fieldPath": field_path}},
    }
