"""Library for generating the metadata of a bundle.

The bundle metadata, `metadata/annotations.yaml`, records the package and
channels of the bundle along with the layout of the bundle image. The same
annotations are written as labels of the `bundle.Dockerfile` that builds the
bundle image:

```yaml
annotations:
  operators.operatorframework.io.bundle.mediatype.v1: registry+v1
  operators.operatorframework.io.bundle.manifests.v1: manifests/
  operators.operatorframework.io.bundle.metadata.v1: metadata/
  operators.operatorframework.io.bundle.package.v1: memcached-operator
  operators.operatorframework.io.bundle.channels.v1: alpha
```

Metadata that already exists is left alone unless it is explicitly overwritten,
since it is often edited by hand once generated.
"""

from dataclasses import dataclass, field
import logging
import os
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
from aiofiles.ospath import isdir
import yaml

from .exceptions import BundleIOException, InputException, MetadataNotFoundError
from .manifest import dump_document, write_text
from .scorecard import DEFAULT_CONFIG_DIR

__all__ = [
    "FoundMetadata",
    "BundleMetadata",
    "find_metadata",
    "generate_metadata",
]

_LOGGER = logging.getLogger(__name__)

MANIFESTS_DIR = "manifests/"
METADATA_DIR = "metadata/"
ANNOTATIONS_FILE = "annotations.yaml"

MEDIATYPE_LABEL = "operators.operatorframework.io.bundle.mediatype.v1"
MANIFESTS_LABEL = "operators.operatorframework.io.bundle.manifests.v1"
METADATA_LABEL = "operators.operatorframework.io.bundle.metadata.v1"
PACKAGE_LABEL = "operators.operatorframework.io.bundle.package.v1"
CHANNELS_LABEL = "operators.operatorframework.io.bundle.channels.v1"
DEFAULT_CHANNEL_LABEL = "operators.operatorframework.io.bundle.channel.default.v1"
TEST_MEDIATYPE_LABEL = "operators.operatorframework.io.test.mediatype.v1"
TEST_CONFIG_LABEL = "operators.operatorframework.io.test.config.v1"

REGISTRY_MEDIATYPE = "registry+v1"
SCORECARD_MEDIATYPE = "scorecard+v1"


@dataclass(frozen=True)
class FoundMetadata:
    """Bundle metadata found in an existing bundle."""

    path: Path
    """The file the metadata was read from."""

    annotations: dict[str, str]

    @property
    def package_name(self) -> str:
        return self.annotations[PACKAGE_LABEL]

    @property
    def channels(self) -> list[str]:
        if not (channels := self.annotations.get(CHANNELS_LABEL)):
            return []
        return channels.split(",")

    @property
    def default_channel(self) -> str | None:
        return self.annotations.get(DEFAULT_CHANNEL_LABEL)


@dataclass
class BundleMetadata:
    """Values used to generate the bundle metadata."""

    package_name: str
    channels: list[str] = field(default_factory=list)
    default_channel: str | None = None

    labels: dict[str, str] = field(default_factory=dict)
    """Auxiliary labels, e.g. the metrics labels of the builder."""

    has_scorecard: bool = False
    """The bundle contains a scorecard test configuration."""

    def annotations(self) -> dict[str, str]:
        """Return the annotations of the bundle in a stable order."""
        annotations = {
            MEDIATYPE_LABEL: REGISTRY_MEDIATYPE,
            MANIFESTS_LABEL: MANIFESTS_DIR,
            METADATA_LABEL: METADATA_DIR,
            PACKAGE_LABEL: self.package_name,
        }
        if self.channels:
            annotations[CHANNELS_LABEL] = ",".join(self.channels)
        if self.default_channel:
            annotations[DEFAULT_CHANNEL_LABEL] = self.default_channel
        annotations.update(self.labels)
        if self.has_scorecard:
            annotations[TEST_MEDIATYPE_LABEL] = SCORECARD_MEDIATYPE
            annotations[TEST_CONFIG_LABEL] = DEFAULT_CONFIG_DIR
        return annotations


async def _read_yaml(path: Path) -> list[Any]:
    try:
        async with aiofiles.open(str(path)) as metadata_file:
            content = await metadata_file.read()
    except OSError as err:
        raise BundleIOException(f"Unable to read {path}: {err}") from err
    try:
        return list(yaml.safe_load_all(content))
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse metadata in {path}: {err}") from err


async def find_metadata(root: Path) -> FoundMetadata:
    """Return the bundle metadata in the metadata directory of the bundle root."""
    metadata_dir = root / METADATA_DIR
    if not await isdir(metadata_dir):
        raise MetadataNotFoundError(f"No bundle metadata directory in {root}")
    for file_name in sorted(await aiofiles.os.listdir(metadata_dir)):
        if not file_name.endswith((".yaml", ".yml")):
            continue
        path = metadata_dir / file_name
        for doc in await _read_yaml(path):
            if not isinstance(doc, dict):
                continue
            annotations = doc.get("annotations")
            if not isinstance(annotations, dict) or PACKAGE_LABEL not in annotations:
                continue
            _LOGGER.debug("Found bundle metadata in %s", path)
            return FoundMetadata(
                path=path,
                annotations={str(k): str(v) for k, v in annotations.items()},
            )
    raise MetadataNotFoundError(f"No bundle metadata found in {metadata_dir}")


def _dockerfile_content(
    root: Path, dockerfile: Path, annotations: dict[str, str], has_scorecard: bool
) -> str:
    def _rel(path: Path) -> str:
        return Path(os.path.relpath(path, dockerfile.parent)).as_posix()

    lines = ["FROM scratch", ""]
    lines.extend(f"LABEL {key}={value}" for key, value in annotations.items())
    lines.append("")
    lines.append(f"COPY {_rel(root / MANIFESTS_DIR)} /{MANIFESTS_DIR}")
    lines.append(f"COPY {_rel(root / METADATA_DIR)} /{METADATA_DIR}")
    if has_scorecard:
        lines.append(f"COPY {_rel(root / DEFAULT_CONFIG_DIR)} /{DEFAULT_CONFIG_DIR}")
    return "\n".join(lines) + "\n"


async def generate_metadata(
    root: Path,
    metadata: BundleMetadata,
    dockerfile: Path,
    overwrite: bool = False,
    bundle_root: Path | None = None,
) -> bool:
    """Write the bundle metadata and bundle.Dockerfile.

    The `bundle_root` is checked for existing metadata and defaults to the
    root the metadata is written to. Returns false without writing anything
    when the bundle already has metadata and it should not be overwritten.
    """
    try:
        found = await find_metadata(bundle_root or root)
    except MetadataNotFoundError:
        found = None
    if found is not None and not overwrite:
        _LOGGER.info(
            "Bundle metadata already exists in %s, not overwriting", found.path
        )
        return False

    annotations = metadata.annotations()
    path = root / METADATA_DIR / ANNOTATIONS_FILE
    _LOGGER.debug("Writing bundle metadata to %s", path)
    await write_text(path, dump_document({"annotations": annotations}))
    _LOGGER.debug("Writing %s", dockerfile)
    await write_text(
        dockerfile,
        _dockerfile_content(root, dockerfile, annotations, metadata.has_scorecard),
    )
    return True
