"""
Local network helpers.
"""

from .ip_detect import get_local_ips, local_endpoints

__all__ = ["get_local_ips", "local_endpoints"]
