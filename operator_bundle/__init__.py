"""
operator-bundle assembles an operator bundle from a set of Kubernetes manifests.

A bundle is a directory with a `manifests/` area holding a synthesized
ClusterServiceVersion, the CustomResourceDefinitions and the other objects the
operator needs, plus a `metadata/` area describing the package and channels.
"""

__all__ = [
    "bundle",
    "collector",
    "clusterserviceversion",
    "config",
    "image",
    "manifest",
    "metadata",
    "source",
    "writer",
    "exceptions",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
