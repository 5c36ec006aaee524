"""
Cluster clients
"""

# Local
from .base import ClusterClientBase, ObjectList
from .dry_run_client import DryRunClusterClient
from .kube_event import KubeEventType, KubeWatchEvent
from .openshift_client import OpenshiftClusterClient
from .rate_limit import RateLimitedClient, RateLimiter
