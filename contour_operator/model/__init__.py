"""
The resource model: the Contour custom resource and the object kinds it owns
"""

# Local
from .contour import (
    AWSLoadBalancerType,
    Contour,
    ContourSpec,
    ExposureMode,
    LoadBalancerProvider,
    LoadBalancerScope,
)
from .identity import (
    ObjectIdentity,
    ReconcileKey,
    get_owner_key,
    make_owner_reference,
    owner_labels,
    owner_selector,
)
from .objects import (
    KIND_REGISTRY,
    MANAGED_KINDS,
    ClusterRole,
    ClusterRoleBinding,
    ConfigMap,
    DaemonSet,
    Deployment,
    Job,
    KubeObject,
    Namespace,
    Role,
    RoleBinding,
    Service,
    ServiceAccount,
    apply_order_key,
    from_dict,
)
