"""
Desired-state rendering
"""

# Local
from .object_set import DesiredObjectSet
from .renderer import RenderConfig, Renderer
