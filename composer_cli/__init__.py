"""
composer-cli - Command line client for the weldr and cloudapi image-build servers.
"""

__version__ = "1.0.0"

__all__ = [
    "__version__",
]
