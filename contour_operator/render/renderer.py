"""
The Renderer turns a Contour into the full set of objects that realize it. It
is a pure function of the Contour and the static image configuration.
"""

# Standard
from dataclasses import dataclass
from typing import Optional

# First Party
import aconfig
import alog

# Local
from .. import config
from ..model import Contour, Namespace
from .common import object_meta, operand_namespace
from .configuration import render_certgen_job, render_config_map
from .object_set import DesiredObjectSet
from .rbac import render_certgen_rbac, render_cluster_rbac, render_service_accounts
from .services import render_contour_service, render_envoy_service
from .workloads import render_contour_deployment, render_envoy_daemonset

log = alog.use_channel("RENDR")


@dataclass(frozen=True)
class RenderConfig:
    """Static inputs to rendering"""

    contour_image: str
    envoy_image: str

    @classmethod
    def from_config(cls, images: Optional[aconfig.Config] = None) -> "RenderConfig":
        images = images or config.images
        return cls(contour_image=images.contour, envoy_image=images.envoy)


class Renderer:
    """Builds the DesiredObjectSet for a Contour"""

    def __init__(self, render_config: Optional[RenderConfig] = None):
        self.render_config = render_config or RenderConfig.from_config()

    def render(self, contour: Contour) -> DesiredObjectSet:
        """Render every object owned by the given Contour

        Args:
            contour:  Contour
                The validated Contour to render

        Returns:
            desired:  DesiredObjectSet
                The desired objects, in a fixed order. The same Contour always
                produces an identical set.
        """
        images = self.render_config
        desired = DesiredObjectSet()

        # The operand namespace is only owned when it should be removed with
        # the Contour
        if contour.spec.namespace.remove_on_deletion:
            desired.add(
                Namespace({"metadata": object_meta(contour, operand_namespace(contour))})
            )

        for obj in render_service_accounts(contour):
            desired.add(obj)
        for obj in render_cluster_rbac(contour):
            desired.add(obj)
        for obj in render_certgen_rbac(contour):
            desired.add(obj)
        desired.add(render_config_map(contour))
        desired.add(render_certgen_job(contour, images.contour_image))
        desired.add(render_contour_deployment(contour, images.contour_image))
        desired.add(
            render_envoy_daemonset(contour, images.contour_image, images.envoy_image)
        )
        desired.add(render_contour_service(contour))
        desired.add(render_envoy_service(contour))

        log.debug2("Rendered %d objects for %s", len(desired), contour.key)
        return desired
