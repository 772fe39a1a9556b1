"""Writers that serialize the bundle manifests to the selected sink.

A `StreamWriter` emits the ClusterServiceVersion and every other manifest as a
single multi-document YAML stream, while a `DirectoryWriter` writes each one to
its own file in the bundle `manifests/` directory. Generated files left over
from a previous run that were not written again are removed when the directory
writer is closed.
"""

from abc import ABC, abstractmethod
import logging
import os
from pathlib import Path
from typing import Any, TextIO

import aiofiles.os
from aiofiles.ospath import exists, isdir

from .exceptions import BundleIOException
from .manifest import (
    MANIFEST_SUFFIXES,
    ManifestSet,
    dump_documents,
    object_file_name,
    read_documents,
    write_document,
)
from .source import DirectorySink, OutputSink, StdoutSink

__all__ = [
    "ManifestWriter",
    "StreamWriter",
    "DirectoryWriter",
    "new_writer",
]

_LOGGER = logging.getLogger(__name__)


class ManifestWriter(ABC):
    """Writes the manifests of a bundle."""

    @abstractmethod
    async def write(self, file_name: str, doc: dict[str, Any]) -> None:
        """Write a single manifest."""

    async def write_manifests(self, manifests: ManifestSet) -> None:
        """Write every CRD and plain object of the manifest set."""
        for doc in manifests.custom_resource_definitions + manifests.objects:
            await self.write(object_file_name(doc), doc)

    @abstractmethod
    async def close(self) -> None:
        """Finish writing the bundle."""


class StreamWriter(ManifestWriter):
    """Writes manifests as a multi-document YAML stream."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream
        self._docs: list[dict[str, Any]] = []

    async def write(self, file_name: str, doc: dict[str, Any]) -> None:
        self._docs.append(doc)

    async def close(self) -> None:
        try:
            self._stream.write(dump_documents(self._docs))
            self._stream.flush()
        except OSError as err:
            raise BundleIOException(f"Unable to write manifests: {err}") from err
        self._docs = []


class DirectoryWriter(ManifestWriter):
    """Writes each manifest to a file in the manifests directory."""

    def __init__(self, manifests_dir: Path) -> None:
        self._manifests_dir = manifests_dir
        self._written: set[str] = set()

    @property
    def manifests_dir(self) -> Path:
        return self._manifests_dir

    async def read(self, file_name: str) -> dict[str, Any] | None:
        """Return a previously written manifest, or None if it does not exist."""
        path = self._manifests_dir / file_name
        if not await exists(path):
            return None
        docs = await read_documents(path)
        if len(docs) != 1:
            return None
        return docs[0]

    def keep(self, file_name: str) -> None:
        """Keep an existing file as is instead of writing it."""
        self._written.add(file_name)

    async def write(self, file_name: str, doc: dict[str, Any]) -> None:
        if file_name in self._written:
            _LOGGER.warning(
                "Manifest %s written more than once, keeping the last one", file_name
            )
        self._written.add(file_name)
        await write_document(self._manifests_dir / file_name, doc)

    async def close(self) -> None:
        """Remove generated files that were not written by this run."""
        if not await isdir(self._manifests_dir):
            return
        for file_name in sorted(os.listdir(self._manifests_dir)):
            if not file_name.endswith(MANIFEST_SUFFIXES) or file_name in self._written:
                continue
            path = self._manifests_dir / file_name
            _LOGGER.debug("Removing stale manifest %s", path)
            try:
                await aiofiles.os.remove(path)
            except OSError as err:
                raise BundleIOException(f"Unable to remove {path}: {err}") from err


def new_writer(sink: OutputSink) -> ManifestWriter:
    """Return the writer for the selected output sink."""
    if isinstance(sink, StdoutSink):
        return StreamWriter(sink.stream)
    if isinstance(sink, DirectorySink):
        return DirectoryWriter(sink.manifests_dir)
    raise TypeError(f"Unsupported output sink: {sink}")
