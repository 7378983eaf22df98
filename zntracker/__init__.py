"""
Peer directory and maintenance services for a ZeroNet-style tracker.
"""

from .version import BUILD_INFO, __version__

__all__ = ["BUILD_INFO", "__version__"]
