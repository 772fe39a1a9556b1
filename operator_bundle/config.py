"""Configuration objects for operator-bundle."""

from dataclasses import dataclass, field
from pathlib import Path
import re

from .exceptions import ConfigException
from .manifest import csv_file_name
from .source import DirectorySink, InputSource, OutputSink

DEFAULT_KUSTOMIZE_DIR = Path("config/manifests")
DEFAULT_DOCKERFILE = Path("bundle.Dockerfile")
DEFAULT_RESOLVER = "oras"

# https://semver.org/#is-there-a-suggested-regular-expression-regex-to-check-a-semver-string
_SEMVER_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)


def validate_version(version: str) -> None:
    """Raise if the version is not a valid semantic version."""
    if not _SEMVER_RE.match(version):
        raise ConfigException(f"{version} is not a valid semantic version")


@dataclass
class BundleConfig:
    """Configuration for a bundle generation run.

    This is built once at startup and passed to every stage.
    """

    package_name: str
    """The name of the operator package, used to name the CSV and its base."""

    layout: str | None = None
    """The project layout from the PROJECT file, if there is one."""

    version: str | None = None
    """Semantic version of the bundle, or keep the version of the base."""

    source: InputSource | None = None
    """Where manifests are read from, only needed to generate manifests."""

    sink: OutputSink = field(default_factory=DirectorySink)
    """Where the bundle is written."""

    kustomize_dir: Path = DEFAULT_KUSTOMIZE_DIR
    """Directory containing `bases/<package>.clusterserviceversion.yaml`."""

    channels: list[str] = field(default_factory=list)
    """Channels the bundle belongs to."""

    default_channel: str | None = None
    """The default channel of the package."""

    overwrite: bool = False
    """Overwrite the bundle metadata if it already exists."""

    ignore_if_only_created_at_changed: bool = False
    """Keep an existing CSV when the only change is the createdAt timestamp."""

    extra_service_accounts: list[str] = field(default_factory=list)
    """Service accounts, besides those of the deployments, to declare RBAC for."""

    use_image_digests: bool = False
    """Pin image tags in the written manifests to digests."""

    resolver: str = DEFAULT_RESOLVER
    """Name of the digest resolver used when pinning images."""

    resolver_options: dict[str, str] = field(default_factory=dict)
    """Options passed to the digest resolver."""

    dockerfile: Path = DEFAULT_DOCKERFILE
    """Path of the bundle.Dockerfile written with the metadata."""

    def __post_init__(self) -> None:
        """Validate values that can be checked without any I/O."""
        if not self.package_name:
            raise ConfigException("a package name must be set")
        if self.version:
            validate_version(self.version)

    @property
    def base_csv_path(self) -> Path:
        """Path of the hand-authored ClusterServiceVersion base."""
        return self.kustomize_dir / "bases" / csv_file_name(self.package_name)
