"""
Shared module to hold constant values for the library
"""

# API group/version of the Contour custom resource
CONTOUR_API_GROUP = "operator.projectcontour.io"
CONTOUR_API_VERSION = f"{CONTOUR_API_GROUP}/v1alpha1"
CONTOUR_KIND = "Contour"

# Finalizer placed on every Contour so that owned objects are removed before
# the Contour itself goes away
CONTOUR_FINALIZER = "contour.operator.projectcontour.io/finalizer"

# Labels placed on every owned object identifying the owning Contour
OWNER_NAME_LABEL = "contour.operator.projectcontour.io/owning-contour-name"
OWNER_NS_LABEL = "contour.operator.projectcontour.io/owning-contour-namespace"

# Annotation holding the managed body the operator last wrote to an object
LAST_APPLIED_ANNOTATION = "contour.operator.projectcontour.io/last-applied"

# Common labels for operand objects
APP_NAME_LABEL = "app.kubernetes.io/name"
APP_INSTANCE_LABEL = "app.kubernetes.io/instance"
APP_COMPONENT_LABEL = "app.kubernetes.io/component"
APP_MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"

# Field manager used on all mutating requests
FIELD_MANAGER = "contour-operator"

# Default namespace for the operands if none given
DEFAULT_OPERAND_NAMESPACE = "projectcontour"

# Delimiter used for nested dict keys
NESTED_DICT_DELIM = "."

# Condition types written to Contour status, in their fixed order
AVAILABLE_CONDITION = "Available"
PROGRESSING_CONDITION = "Progressing"
RECONCILE_ERROR_CONDITION = "ReconcileError"
CONDITION_ORDER = [
    AVAILABLE_CONDITION,
    PROGRESSING_CONDITION,
    RECONCILE_ERROR_CONDITION,
]

# Well-known ports
XDS_PORT = 8001
CONTOUR_METRICS_PORT = 8000
ENVOY_HTTP_PORT = 8080
ENVOY_HTTPS_PORT = 8443
ENVOY_ADMIN_PORT = 9001
SHUTDOWN_MANAGER_PORT = 8090
HTTP_PORT = 80
HTTPS_PORT = 443
NODE_PORT_MIN = 30000
NODE_PORT_MAX = 32767
