"""
The contour config map and the certificate generation job
"""

# Third Party
import yaml

# Local
from ..model import ConfigMap, Contour, Job, KubeObject
from .common import (
    CERTGEN_COMPONENT,
    CERTGEN_NAME,
    CONTOUR_COMPONENT,
    CONTOUR_CONFIG_KEY,
    CONTOUR_NAME,
    POD_SECURITY_CONTEXT,
    field_ref_env,
    image_tag,
    object_meta,
    operand_namespace,
    selector_labels,
)


def render_config_map(contour: Contour) -> KubeObject:
    """The contour.yaml consumed by contour serve. Dumped with sorted keys so
    the content is stable.
    """
    namespace = operand_namespace(contour)
    contour_config = {
        "accesslog-format": "envoy",
        "disablePermitInsecure": False,
        "enableExternalNameService": contour.spec.enable_external_name_service,
        "leaderelection": {
            "configmap-name": "leader-elect",
            "configmap-namespace": namespace,
        },
        "tls": {"fallback-certificate": {}},
    }
    return ConfigMap(
        {
            "metadata": object_meta(contour, CONTOUR_NAME, namespace, CONTOUR_COMPONENT),
            "data": {
                CONTOUR_CONFIG_KEY: yaml.safe_dump(
                    contour_config, sort_keys=True, default_flow_style=False
                )
            },
        }
    )


def render_certgen_job(contour: Contour, contour_image: str) -> KubeObject:
    """The job that generates the contour/envoy TLS secrets. The name carries
    the image tag so an upgrade produces a new job.
    """
    namespace = operand_namespace(contour)
    name = f"{CERTGEN_NAME}-{image_tag(contour_image)}".replace(".", "-")
    return Job(
        {
            "metadata": object_meta(contour, name, namespace, CERTGEN_COMPONENT),
            "spec": {
                "backoffLimit": 1,
                "template": {
                    "metadata": {"labels": selector_labels(contour, CERTGEN_NAME)},
                    "spec": {
                        "containers": [
                            {
                                "name": "contour",
                                "image": contour_image,
                                "imagePullPolicy": "IfNotPresent",
                                "command": [
                                    "contour",
                                    "certgen",
                                    "--kube",
                                    "--incluster",
                                    "--overwrite",
                                    "--secrets-format=compact",
                                    "--namespace=$(CONTOUR_NAMESPACE)",
                                ],
                                "env": [field_ref_env("CONTOUR_NAMESPACE", "metadata.namespace")],
                            }
                        ],
                        "restartPolicy": "Never",
                        "serviceAccountName": CERTGEN_NAME,
                        "securityContext": dict(POD_SECURITY_CONTEXT),
                    },
                },
            },
        }
    )
