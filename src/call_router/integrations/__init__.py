"""
External service integrations
"""

from .control_plane import ControlPlaneConfigReader

__all__ = ["ControlPlaneConfigReader"]
