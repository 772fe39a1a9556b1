"""Exceptions related to operator-bundle."""

__all__ = [
    "BundleException",
    "ConfigException",
    "InputException",
    "MergeException",
    "BundleIOException",
    "ImageResolutionException",
    "ObjectNotFoundError",
    "BaseNotFoundError",
    "MetadataNotFoundError",
]


class BundleException(Exception):
    """Generic base exception used for this library."""


class ConfigException(BundleException):
    """Raised when the requested sources, outputs or values are contradictory."""


class InputException(BundleException):
    """Raised when the input files or values are not formatted as expected."""


class MergeException(BundleException):
    """Raised when the ClusterServiceVersion cannot be synthesized from its inputs."""


class BundleIOException(BundleException):
    """Raised when reading or writing bundle files fails."""


class ImageResolutionException(BundleException):
    """Raised when an image reference can't be resolved to a digest."""

    def __init__(self, reference: str, message: str | None) -> None:
        super().__init__(
            f"Unable to resolve image {reference}: {message or 'Unknown error'}"
        )
        self.reference = reference
        self.message = message


class ObjectNotFoundError(BundleException):
    """Raised when an optional object does not exist."""


class BaseNotFoundError(ObjectNotFoundError):
    """Raised when there is no ClusterServiceVersion base at the expected path."""


class MetadataNotFoundError(ObjectNotFoundError):
    """Raised when a bundle directory does not contain bundle metadata."""
