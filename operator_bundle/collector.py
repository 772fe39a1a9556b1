"""Library for collecting manifests from the selected input source.

Manifests may come from a piped stream, typically the output of
`kustomize build config/manifests`, or from a directory of cluster-ready
manifests on disk:

```python
from operator_bundle import collector

manifests = await collector.collect_from_directory(Path("deploy"))
for crd in manifests.custom_resource_definitions:
    print(f"Found CRD {crd['metadata']['name']}")
```
"""

import logging
import os
from pathlib import Path
from typing import TextIO

from aiofiles.ospath import isdir

from .exceptions import BundleIOException
from .manifest import MANIFEST_SUFFIXES, ManifestSet, load_documents, read_documents
from .source import DirectoryPairSource, DirectorySource, InputSource, StdinSource

__all__ = [
    "collect",
    "collect_from_stream",
    "collect_from_directory",
    "collect_from_directory_pair",
]

_LOGGER = logging.getLogger(__name__)

STDIN_NAME = "<stdin>"


def manifest_files(root: Path) -> list[Path]:
    """Return manifest files in the directory tree in a deterministic order."""
    files = []
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for filename in sorted(filenames):
            if filename.endswith(MANIFEST_SUFFIXES):
                files.append(Path(dirpath) / filename)
    return files


async def _update_from_directory(manifests: ManifestSet, path: Path) -> None:
    """Add all manifests found under the directory to the set."""
    if not await isdir(path):
        raise BundleIOException(f"Input directory does not exist: {path}")
    for file in manifest_files(path):
        _LOGGER.debug("Reading manifests from %s", file)
        for doc in await read_documents(file):
            manifests.add(doc)


async def collect_from_stream(stream: TextIO) -> ManifestSet:
    """Collect manifests from a multi-document YAML stream."""
    try:
        content = stream.read()
    except OSError as err:
        raise BundleIOException(f"Unable to read {STDIN_NAME}: {err}") from err
    manifests = ManifestSet()
    for doc in load_documents(content, STDIN_NAME):
        manifests.add(doc)
    manifests.split_custom_resources()
    return manifests


async def collect_from_directory(path: Path) -> ManifestSet:
    """Collect manifests from every manifest file in the directory tree."""
    manifests = ManifestSet()
    await _update_from_directory(manifests, path)
    manifests.split_custom_resources()
    return manifests


async def collect_from_directory_pair(deploy_dir: Path, crds_dir: Path) -> ManifestSet:
    """Collect manifests from two independent roots into a single set."""
    manifests = ManifestSet()
    await _update_from_directory(manifests, deploy_dir)
    await _update_from_directory(manifests, crds_dir)
    manifests.split_custom_resources()
    return manifests


async def collect(source: InputSource) -> ManifestSet:
    """Collect manifests from the selected input source."""
    if isinstance(source, StdinSource):
        _LOGGER.debug("Collecting manifests from %s", STDIN_NAME)
        return await collect_from_stream(source.stream)
    if isinstance(source, DirectoryPairSource):
        _LOGGER.debug(
            "Collecting manifests from %s and %s", source.deploy_dir, source.crds_dir
        )
        return await collect_from_directory_pair(source.deploy_dir, source.crds_dir)
    if isinstance(source, DirectorySource):
        _LOGGER.debug("Collecting manifests from %s", source.path)
        return await collect_from_directory(source.path)
    raise TypeError(f"Unsupported input source: {source}")
