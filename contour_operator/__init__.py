"""
Package exports
"""

# Local
from . import config, reconcile, status
from .admission import AdmissionResult, validate
from .applier import Applier, ApplyResult, Plan, diff
from .cluster import ClusterClientBase, DryRunClusterClient, OpenshiftClusterClient
from .exceptions import assert_cluster, assert_config, assert_invariant
from .finalizer import Finalizer
from .manager import Operator
from .model import Contour, ObjectIdentity, ReconcileKey
from .observer import CacheObserver, ObjectCache
from .reconcile import Reconciler, ReconcileResult
from .render import DesiredObjectSet, Renderer
