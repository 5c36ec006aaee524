"""
The contour Deployment and the envoy DaemonSet
"""

# Local
from .. import constants
from ..model import Contour, DaemonSet, Deployment, KubeObject
from .common import (
    CONTOUR_COMPONENT,
    CONTOUR_CERT_SECRET,
    CONTOUR_CONFIG_KEY,
    CONTOUR_NAME,
    ENVOY_CERT_SECRET,
    ENVOY_COMPONENT,
    ENVOY_NAME,
    POD_SECURITY_CONTEXT,
    field_ref_env,
    object_meta,
    operand_namespace,
    pod_placement,
    selector_labels,
)

ENVOY_STATS_PORT = 8002


def render_contour_deployment(contour: Contour, contour_image: str) -> KubeObject:
    """The contour control plane deployment"""
    namespace = operand_namespace(contour)
    spec = contour.spec
    selector = selector_labels(contour, CONTOUR_NAME)

    args = [
        "serve",
        "--incluster",
        "--xds-address=0.0.0.0",
        f"--xds-port={constants.XDS_PORT}",
        "--contour-cafile=/certs/ca.crt",
        "--contour-cert-file=/certs/tls.crt",
        "--contour-key-file=/certs/tls.key",
        f"--config-path=/config/{CONTOUR_CONFIG_KEY}",
        f"--envoy-service-name={ENVOY_NAME}",
        f"--envoy-service-namespace={namespace}",
        f"--leader-election-resource-name=leader-{contour.name}",
    ]
    if spec.ingress_class_name:
        args.append(f"--ingress-class-name={spec.ingress_class_name}")

    container = {
        "name": CONTOUR_NAME,
        "image": contour_image,
        "imagePullPolicy": "IfNotPresent",
        "command": ["contour"],
        "args": args,
        "env": [
            field_ref_env("CONTOUR_NAMESPACE", "metadata.namespace"),
            field_ref_env("POD_NAME", "metadata.name"),
        ],
        "ports": [
            {"name": "xds", "containerPort": constants.XDS_PORT, "protocol": "TCP"},
            {
                "name": "metrics",
                "containerPort": constants.CONTOUR_METRICS_PORT,
                "protocol": "TCP",
            },
        ],
        "livenessProbe": {
            "httpGet": {"path": "/healthz", "port": constants.CONTOUR_METRICS_PORT}
        },
        "readinessProbe": {
            "tcpSocket": {"port": constants.XDS_PORT},
            "initialDelaySeconds": 15,
            "periodSeconds": 10,
        },
        "volumeMounts": [
            {"name": CONTOUR_CERT_SECRET, "mountPath": "/certs", "readOnly": True},
            {"name": "contour-config", "mountPath": "/config", "readOnly": True},
        ],
    }
    resources = spec.contour_resources.to_dict()
    if resources:
        container["resources"] = resources

    pod_spec = {
        "serviceAccountName": CONTOUR_NAME,
        "containers": [container],
        "dnsPolicy": "ClusterFirst",
        "securityContext": dict(POD_SECURITY_CONTEXT),
        "affinity": {
            "podAntiAffinity": {
                "preferredDuringSchedulingIgnoredDuringExecution": [
                    {
                        "weight": 100,
                        "podAffinityTerm": {
                            "labelSelector": {"matchLabels": dict(selector)},
                            "topologyKey": "kubernetes.io/hostname",
                        },
                    }
                ]
            }
        },
        "volumes": [
            {"name": CONTOUR_CERT_SECRET, "secret": {"secretName": CONTOUR_CERT_SECRET}},
            {
                "name": "contour-config",
                "configMap": {
                    "name": CONTOUR_NAME,
                    "items": [{"key": CONTOUR_CONFIG_KEY, "path": CONTOUR_CONFIG_KEY}],
                },
            },
        ],
    }
    pod_spec.update(pod_placement(spec.contour_placement))

    return Deployment(
        {
            "metadata": object_meta(contour, CONTOUR_NAME, namespace, CONTOUR_COMPONENT),
            "spec": {
                "replicas": spec.replicas,
                "selector": {"matchLabels": dict(selector)},
                "strategy": {
                    "type": "RollingUpdate",
                    "rollingUpdate": {"maxSurge": "50%", "maxUnavailable": "25%"},
                },
                "template": {
                    "metadata": {
                        "labels": dict(selector),
                        "annotations": {
                            "prometheus.io/scrape": "true",
                            "prometheus.io/port": str(constants.CONTOUR_METRICS_PORT),
                        },
                    },
                    "spec": pod_spec,
                },
            },
        }
    )


def render_envoy_daemonset(
    contour: Contour, contour_image: str, envoy_image: str
) -> KubeObject:
    """The envoy data plane daemonset with its shutdown manager sidecar and the
    bootstrap init container
    """
    namespace = operand_namespace(contour)
    spec = contour.spec
    selector = selector_labels(contour, ENVOY_NAME)
    cert_mount = {"name": ENVOY_CERT_SECRET, "mountPath": "/certs", "readOnly": True}
    config_mount = {"name": "envoy-config", "mountPath": "/config", "readOnly": True}

    shutdown_manager = {
        "name": "shutdown-manager",
        "image": contour_image,
        "imagePullPolicy": "IfNotPresent",
        "command": ["/bin/contour"],
        "args": ["envoy", "shutdown-manager"],
        "livenessProbe": {
            "httpGet": {"path": "/healthz", "port": constants.SHUTDOWN_MANAGER_PORT},
            "initialDelaySeconds": 3,
            "periodSeconds": 10,
        },
        "lifecycle": {
            "preStop": {"exec": {"command": ["/bin/contour", "envoy", "shutdown"]}}
        },
    }
    envoy = {
        "name": ENVOY_NAME,
        "image": envoy_image,
        "imagePullPolicy": "IfNotPresent",
        "command": ["envoy"],
        "args": [
            "-c",
            "/config/envoy.json",
            "--service-cluster $(CONTOUR_NAMESPACE)",
            "--service-node $(ENVOY_POD_NAME)",
            "--log-level info",
        ],
        "env": [
            field_ref_env("CONTOUR_NAMESPACE", "metadata.namespace"),
            field_ref_env("ENVOY_POD_NAME", "metadata.name"),
        ],
        "ports": [
            {"name": "http", "containerPort": constants.ENVOY_HTTP_PORT, "protocol": "TCP"},
            {
                "name": "https",
                "containerPort": constants.ENVOY_HTTPS_PORT,
                "protocol": "TCP",
            },
        ],
        "readinessProbe": {
            "httpGet": {"path": "/ready", "port": ENVOY_STATS_PORT},
            "initialDelaySeconds": 3,
            "periodSeconds": 4,
        },
        "volumeMounts": [config_mount, cert_mount],
        "lifecycle": {
            "preStop": {
                "httpGet": {
                    "path": "/shutdown",
                    "port": constants.SHUTDOWN_MANAGER_PORT,
                    "scheme": "HTTP",
                }
            }
        },
    }
    resources = spec.envoy_resources.to_dict()
    if resources:
        envoy["resources"] = resources

    init_config = {
        "name": "envoy-initconfig",
        "image": contour_image,
        "imagePullPolicy": "IfNotPresent",
        "command": ["contour"],
        "args": [
            "bootstrap",
            "/config/envoy.json",
            f"--xds-address={CONTOUR_NAME}",
            f"--xds-port={constants.XDS_PORT}",
            "--xds-resource-version=v3",
            "--resources-dir=/config/resources",
            "--envoy-cafile=/certs/ca.crt",
            "--envoy-cert-file=/certs/tls.crt",
            "--envoy-key-file=/certs/tls.key",
        ],
        "env": [field_ref_env("CONTOUR_NAMESPACE", "metadata.namespace")],
        "volumeMounts": [
            {"name": "envoy-config", "mountPath": "/config"},
            dict(cert_mount),
        ],
    }

    pod_spec = {
        "serviceAccountName": ENVOY_NAME,
        "automountServiceAccountToken": False,
        "terminationGracePeriodSeconds": 300,
        "containers": [shutdown_manager, envoy],
        "initContainers": [init_config],
        "restartPolicy": "Always",
        "securityContext": dict(POD_SECURITY_CONTEXT),
        "volumes": [
            {"name": "envoy-config", "emptyDir": {}},
            {"name": ENVOY_CERT_SECRET, "secret": {"secretName": ENVOY_CERT_SECRET}},
        ],
    }
    pod_spec.update(pod_placement(spec.envoy_placement))

    return DaemonSet(
        {
            "metadata": object_meta(contour, ENVOY_NAME, namespace, ENVOY_COMPONENT),
            "spec": {
                "selector": {"matchLabels": dict(selector)},
                "updateStrategy": {
                    "type": "RollingUpdate",
                    "rollingUpdate": {"maxUnavailable": "10%"},
                },
                "template": {
                    "metadata": {
                        "labels": dict(selector),
                        "annotations": {
                            "prometheus.io/scrape": "true",
                            "prometheus.io/port": str(ENVOY_STATS_PORT),
                            "prometheus.io/path": "/stats/prometheus",
                        },
                    },
                    "spec": pod_spec,
                },
            },
        }
    )
