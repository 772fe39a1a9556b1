"""Tests for input source and output sink selection."""

import io
from pathlib import Path

import pytest

from operator_bundle.exceptions import ConfigException
from operator_bundle.source import (
    DirectoryPairSource,
    DirectorySink,
    DirectorySource,
    StdinSource,
    StdoutSink,
    is_pipe,
    resolve_input_source,
    resolve_output_sink,
    validate_sources,
)


@pytest.mark.parametrize(
    ("is_pipe_reader", "is_input_dir", "is_legacy_dirs"),
    [
        (True, False, False),
        (False, True, False),
        (False, False, True),
    ],
)
def test_validate_single_source(
    is_pipe_reader: bool, is_input_dir: bool, is_legacy_dirs: bool
) -> None:
    """Exactly one active source is valid."""
    validate_sources(is_pipe_reader, is_input_dir, is_legacy_dirs)


@pytest.mark.parametrize(
    ("is_pipe_reader", "is_input_dir", "is_legacy_dirs", "message"),
    [
        (False, False, False, "one of stdin, --input-dir, or --deploy-dir"),
        (True, True, False, "if reading from stdin"),
        (True, False, True, "if reading from stdin"),
        (True, True, True, "if reading from stdin"),
        (False, True, True, "if not reading from stdin"),
    ],
)
def test_validate_invalid_sources(
    is_pipe_reader: bool, is_input_dir: bool, is_legacy_dirs: bool, message: str
) -> None:
    """Zero or several active sources are rejected."""
    with pytest.raises(ConfigException, match=message):
        validate_sources(is_pipe_reader, is_input_dir, is_legacy_dirs)


def test_resolve_stdin() -> None:
    """A piped stream is selected first."""
    stream = io.StringIO("")
    assert resolve_input_source(stdin=stream) == StdinSource(stream)


def test_resolve_directory_pair() -> None:
    """Both legacy directories are read together."""
    assert resolve_input_source(
        deploy_dir=Path("deploy"), crds_dir=Path("deploy/crds")
    ) == DirectoryPairSource(deploy_dir=Path("deploy"), crds_dir=Path("deploy/crds"))


@pytest.mark.parametrize(
    ("kwargs", "expected"),
    [
        ({"deploy_dir": Path("deploy")}, Path("deploy")),
        ({"crds_dir": Path("crds")}, Path("crds")),
        ({"input_dir": Path("manifests")}, Path("manifests")),
    ],
)
def test_resolve_single_directory(kwargs: dict[str, Path], expected: Path) -> None:
    """A single legacy directory is treated as an input directory."""
    assert resolve_input_source(**kwargs) == DirectorySource(expected)


def test_resolve_stdin_and_directory() -> None:
    """Reading from stdin does not allow any directories."""
    with pytest.raises(ConfigException, match="if reading from stdin"):
        resolve_input_source(stdin=io.StringIO(""), input_dir=Path("manifests"))


def test_resolve_output_sink() -> None:
    """Test the default output directory and stdout."""
    assert resolve_output_sink() == DirectorySink(Path("bundle"))
    assert resolve_output_sink(output_dir=Path("out")) == DirectorySink(Path("out"))
    stream = io.StringIO()
    assert resolve_output_sink(stdout=stream) == StdoutSink(stream)
    with pytest.raises(ConfigException, match="--output-dir cannot be set"):
        resolve_output_sink(stdout=stream, output_dir=Path("out"))


def test_directory_sink_paths() -> None:
    """Test the layout of a bundle directory."""
    sink = DirectorySink(Path("out"))
    assert sink.manifests_dir == Path("out/manifests")
    assert sink.metadata_dir == Path("out/metadata")


def test_is_pipe(tmp_path: Path) -> None:
    """Only a real pipe counts as piped input."""
    assert not is_pipe(io.StringIO("content"))
    with (tmp_path / "file.yaml").open("w") as regular_file:
        assert not is_pipe(regular_file)
