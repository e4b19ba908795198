"""
Service layer
"""

from .call_processor import CallProcessor, UNROUTED_TENANT

__all__ = ["CallProcessor", "UNROUTED_TENANT"]
