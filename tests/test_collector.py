"""Tests for the manifest collector."""

import io
from pathlib import Path

import pytest

from operator_bundle.collector import (
    collect,
    collect_from_directory,
    collect_from_directory_pair,
    collect_from_stream,
)
from operator_bundle.exceptions import BundleIOException, InputException
from operator_bundle.source import DirectoryPairSource, DirectorySource, StdinSource

TESTDATA = Path("tests/testdata")
DEPLOY_DIR = TESTDATA / "memcached-operator/deploy"
MINIMAL_DIR = TESTDATA / "minimal"


async def test_collect_from_directory() -> None:
    """Test collecting every manifest in a directory."""
    manifests = await collect_from_directory(DEPLOY_DIR)
    assert len(manifests.custom_resource_definitions) == 1
    assert len(manifests.custom_resources) == 1
    assert len(manifests.objects) == 8
    assert manifests.scorecard_config is not None


async def test_collect_from_stream() -> None:
    """Test collecting manifests piped in as a single stream."""
    content = "---\n".join(
        path.read_text() for path in sorted(DEPLOY_DIR.glob("*.yaml"))
    )
    manifests = await collect_from_stream(io.StringIO(content))
    expected = await collect_from_directory(DEPLOY_DIR)
    assert manifests == expected


async def test_collect_from_directory_pair() -> None:
    """Two roots are merged into a single set."""
    manifests = await collect_from_directory_pair(DEPLOY_DIR, MINIMAL_DIR)
    assert [
        crd["metadata"]["name"] for crd in manifests.custom_resource_definitions
    ] == ["memcacheds.cache.example.com", "memcachedbackups.cache.example.com"]
    assert [obj["metadata"]["name"] for obj in manifests.deployments] == [
        "memcached-operator-controller-manager",
        "backup-manager",
    ]


async def test_collect_dispatch() -> None:
    """Test collection from each kind of source."""
    manifests = await collect(DirectorySource(MINIMAL_DIR))
    assert len(manifests.custom_resource_definitions) == 1
    manifests = await collect(DirectoryPairSource(DEPLOY_DIR, MINIMAL_DIR))
    assert len(manifests.custom_resource_definitions) == 2
    manifests = await collect(
        StdinSource(io.StringIO((MINIMAL_DIR / "manager.yaml").read_text()))
    )
    assert len(manifests.deployments) == 1


async def test_collect_skips_other_files(tmp_path: Path) -> None:
    """Only manifest files are read and directories are walked recursively."""
    (tmp_path / "nested").mkdir()
    (tmp_path / "nested" / "manager.yml").write_text(
        (MINIMAL_DIR / "manager.yaml").read_text()
    )
    (tmp_path / "README.md").write_text("# Not a manifest\n")
    (tmp_path / "kustomization.yaml").write_text("resources:\n- nested/manager.yml\n")
    manifests = await collect_from_directory(tmp_path)
    assert [doc["kind"] for doc in manifests.objects] == ["Deployment"]


async def test_collect_missing_directory(tmp_path: Path) -> None:
    """A missing input directory is an I/O error."""
    with pytest.raises(BundleIOException, match="does not exist"):
        await collect_from_directory(tmp_path / "missing")


async def test_collect_invalid_yaml(tmp_path: Path) -> None:
    """A YAML syntax error names the file."""
    (tmp_path / "broken.yaml").write_text("kind: [Deployment\n")
    with pytest.raises(InputException, match="broken.yaml"):
        await collect_from_directory(tmp_path)
