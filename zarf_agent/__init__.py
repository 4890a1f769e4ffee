"""
zarf-agent rewrites Kubernetes resources and package manager traffic so that
an airgapped cluster resolves every reference through its internal mirrors.
"""

__all__ = [
    "admission",
    "app",
    "config",
    "hooks",
    "manifest",
    "operations",
    "proxy",
    "state",
    "transform",
    "exceptions",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
