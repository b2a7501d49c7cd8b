"""
Building blocks shared by the API and the workers.
"""

from filevault.utils.logging import get_correlation_id, setup_logging

__all__ = ["get_correlation_id", "setup_logging"]
