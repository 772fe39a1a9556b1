"""Selection of the input source and output sink for bundle generation.

Manifests may be piped in on stdin, read from a single `--input-dir`, or read
from the legacy pair of `--deploy-dir` and `--crds-dir`. Exactly one of these
must be selected. The selection is validated and resolved once before any
manifests are read, so a misconfiguration is reported without doing any I/O.

Example usage:

```python
from operator_bundle import source

input_source = source.resolve_input_source(input_dir=Path("deploy"))
sink = source.resolve_output_sink(output_dir=Path("bundle"))
```
"""

from dataclasses import dataclass
from pathlib import Path
import stat
import os
from typing import TextIO

from .exceptions import ConfigException

__all__ = [
    "StdinSource",
    "DirectorySource",
    "DirectoryPairSource",
    "InputSource",
    "StdoutSink",
    "DirectorySink",
    "OutputSink",
    "is_pipe",
    "validate_sources",
    "resolve_input_source",
    "resolve_output_sink",
]

DEFAULT_ROOT_DIR = Path("bundle")


@dataclass(frozen=True)
class StdinSource:
    """Manifests are read from a piped stream."""

    stream: TextIO


@dataclass(frozen=True)
class DirectorySource:
    """Manifests are read from every file in a directory tree."""

    path: Path


@dataclass(frozen=True)
class DirectoryPairSource:
    """Manifests are read from the legacy deploy and CRDs directories."""

    deploy_dir: Path
    crds_dir: Path


InputSource = StdinSource | DirectorySource | DirectoryPairSource


@dataclass(frozen=True)
class StdoutSink:
    """Bundle manifests are written as a single multi-document stream."""

    stream: TextIO


@dataclass(frozen=True)
class DirectorySink:
    """Bundle files are written into a bundle root directory."""

    root: Path = DEFAULT_ROOT_DIR

    @property
    def manifests_dir(self) -> Path:
        return self.root / "manifests"

    @property
    def metadata_dir(self) -> Path:
        return self.root / "metadata"


OutputSink = StdoutSink | DirectorySink


def is_pipe(stream: TextIO) -> bool:
    """Return true if the stream is a pipe."""
    try:
        mode = os.fstat(stream.fileno()).st_mode
    except (OSError, ValueError):
        return False
    return stat.S_ISFIFO(mode)


def validate_sources(
    is_pipe_reader: bool, is_input_dir: bool, is_legacy_dirs: bool
) -> None:
    """Check that exactly one manifest source has been selected."""
    if not (is_pipe_reader or is_input_dir or is_legacy_dirs):
        raise ConfigException(
            "one of stdin, --input-dir, or --deploy-dir (and optionally --crds-dir) must be set"
        )
    if is_pipe_reader and (is_input_dir or is_legacy_dirs):
        raise ConfigException(
            "none of --input-dir, --deploy-dir, or --crds-dir may be set if reading from stdin"
        )
    if is_input_dir and is_legacy_dirs:
        raise ConfigException(
            "only one of --input-dir or --deploy-dir (and optionally --crds-dir) "
            "may be set if not reading from stdin"
        )


def resolve_input_source(
    *,
    stdin: TextIO | None = None,
    input_dir: Path | None = None,
    deploy_dir: Path | None = None,
    crds_dir: Path | None = None,
) -> InputSource:
    """Validate the selected sources and return the one that is active.

    The `stdin` stream should only be passed when it is actually a pipe.
    A single legacy directory is treated the same as `input_dir`.
    """
    validate_sources(
        stdin is not None,
        input_dir is not None,
        deploy_dir is not None or crds_dir is not None,
    )
    if stdin is not None:
        return StdinSource(stdin)
    if deploy_dir is not None and crds_dir is not None:
        return DirectoryPairSource(deploy_dir=deploy_dir, crds_dir=crds_dir)
    if deploy_dir is not None:
        return DirectorySource(deploy_dir)
    if crds_dir is not None:
        return DirectorySource(crds_dir)
    assert input_dir is not None
    return DirectorySource(input_dir)


def resolve_output_sink(
    *, stdout: TextIO | None = None, output_dir: Path | None = None
) -> OutputSink:
    """Return the sink for bundle output, defaulting to the `bundle` directory."""
    if stdout is not None:
        if output_dir is not None:
            raise ConfigException("--output-dir cannot be set if writing to stdout")
        return StdoutSink(stdout)
    return DirectorySink(output_dir or DEFAULT_ROOT_DIR)
