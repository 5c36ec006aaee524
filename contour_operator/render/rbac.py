"""
Service accounts and RBAC objects for the Contour operands
"""

# Standard
from typing import List

# Local
from ..model import (
    ClusterRole,
    ClusterRoleBinding,
    Contour,
    KubeObject,
    Role,
    RoleBinding,
    ServiceAccount,
)
from .common import (
    CERTGEN_COMPONENT,
    CERTGEN_NAME,
    CONTOUR_COMPONENT,
    CONTOUR_NAME,
    ENVOY_COMPONENT,
    ENVOY_NAME,
    cluster_scoped_name,
    object_meta,
    operand_namespace,
)

RBAC_API_GROUP = "rbac.authorization.k8s.io"

_READ = ["get", "list", "watch"]
_WRITE = ["create", "get", "update"]

# Permissions contour needs to watch and update the resources it serves
CONTOUR_RULES = [
    {"apiGroups": [""], "resources": ["configmaps"], "verbs": _WRITE},
    {
        "apiGroups": [""],
        "resources": ["endpoints", "namespaces", "secrets", "services"],
        "verbs": _READ,
    },
    {"apiGroups": [""], "resources": ["events"], "verbs": _WRITE},
    {"apiGroups": ["coordination.k8s.io"], "resources": ["leases"], "verbs": _WRITE},
    {
        "apiGroups": ["networking.k8s.io"],
        "resources": ["ingresses", "ingressclasses"],
        "verbs": _READ,
    },
    {
        "apiGroups": ["networking.k8s.io"],
        "resources": ["ingresses/status"],
        "verbs": _WRITE,
    },
    {
        "apiGroups": ["networking.x-k8s.io"],
        "resources": [
            "backendpolicies",
            "gatewayclasses",
            "gateways",
            "httproutes",
            "tlsroutes",
        ],
        "verbs": _READ,
    },
    {
        "apiGroups": ["projectcontour.io"],
        "resources": [
            "extensionservices",
            "httpproxies",
            "tlscertificatedelegations",
        ],
        "verbs": _READ,
    },
    {
        "apiGroups": ["projectcontour.io"],
        "resources": ["extensionservices/status", "httpproxies/status"],
        "verbs": _WRITE,
    },
]

# The certgen job only writes the certificate secrets
CERTGEN_RULES = [
    {"apiGroups": [""], "resources": ["secrets"], "verbs": ["create", "update"]},
]


def render_service_accounts(contour: Contour) -> List[KubeObject]:
    namespace = operand_namespace(contour)
    return [
        ServiceAccount(
            {"metadata": object_meta(contour, name, namespace, component)}
        )
        for name, component in [
            (CONTOUR_NAME, CONTOUR_COMPONENT),
            (ENVOY_NAME, ENVOY_COMPONENT),
            (CERTGEN_NAME, CERTGEN_COMPONENT),
        ]
    ]


def render_cluster_rbac(contour: Contour) -> List[KubeObject]:
    """The ClusterRole and ClusterRoleBinding granting contour its permissions"""
    name = cluster_scoped_name(contour)
    role = ClusterRole(
        {
            "metadata": object_meta(contour, name, component=CONTOUR_COMPONENT),
            "rules": CONTOUR_RULES,
        }
    )
    binding = ClusterRoleBinding(
        {
            "metadata": object_meta(contour, name, component=CONTOUR_COMPONENT),
            "roleRef": {"apiGroup": RBAC_API_GROUP, "kind": "ClusterRole", "name": name},
            "subjects": [
                {
                    "kind": "ServiceAccount",
                    "name": CONTOUR_NAME,
                    "namespace": operand_namespace(contour),
                }
            ],
        }
    )
    return [role, binding]


def render_certgen_rbac(contour: Contour) -> List[KubeObject]:
    """The Role and RoleBinding used by the certgen job"""
    namespace = operand_namespace(contour)
    role = Role(
        {
            "metadata": object_meta(contour, CERTGEN_NAME, namespace, CERTGEN_COMPONENT),
            "rules": CERTGEN_RULES,
        }
    )
    binding = RoleBinding(
        {
            "metadata": object_meta(contour, CERTGEN_NAME, namespace, CERTGEN_COMPONENT),
            "roleRef": {"apiGroup": RBAC_API_GROUP, "kind": "Role", "name": CERTGEN_NAME},
            "subjects": [
                {"kind": "ServiceAccount", "name": CERTGEN_NAME, "namespace": namespace}
            ],
        }
    )
    return [role, binding]
