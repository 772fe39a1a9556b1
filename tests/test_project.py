"""Tests for project discovery."""

from pathlib import Path

import pytest

from operator_bundle.exceptions import InputException
from operator_bundle.project import (
    bundle_metadata_labels,
    bundle_object_annotations,
    package_name_and_layout,
    read_project_config,
)

PROJECT_DIR = Path("tests/testdata/memcached-operator")


async def test_read_project_config() -> None:
    """Test reading a PROJECT file."""
    config = await read_project_config(PROJECT_DIR)
    assert config is not None
    assert config.project_name == "memcached-operator"
    assert config.layout == ["go.kubebuilder.io/v4"]
    assert config.project_layout == "go.kubebuilder.io/v4"
    assert config.domain == "example.com"


async def test_read_legacy_project_config(tmp_path: Path) -> None:
    """Older projects have a single layout string."""
    (tmp_path / "PROJECT").write_text(
        "domain: example.com\nlayout: go.kubebuilder.io/v2\nversion: '2'\n"
    )
    config = await read_project_config(tmp_path)
    assert config is not None
    assert config.project_name is None
    assert config.layout == ["go.kubebuilder.io/v2"]


async def test_missing_project_config(tmp_path: Path) -> None:
    """A directory without a PROJECT file has no config."""
    assert await read_project_config(tmp_path) is None


async def test_invalid_project_config(tmp_path: Path) -> None:
    """Test a PROJECT file that can't be parsed."""
    (tmp_path / "PROJECT").write_text("- not\n- a map\n")
    with pytest.raises(InputException):
        await read_project_config(tmp_path)


async def test_package_name_and_layout(tmp_path: Path) -> None:
    """Test the order in which the package name is chosen."""
    assert await package_name_and_layout(None, PROJECT_DIR) == (
        "memcached-operator",
        "go.kubebuilder.io/v4",
    )
    assert await package_name_and_layout("other", PROJECT_DIR) == (
        "other",
        "go.kubebuilder.io/v4",
    )
    project_dir = tmp_path / "My-Operator"
    project_dir.mkdir()
    assert await package_name_and_layout(None, project_dir) == ("my-operator", None)


def test_bundle_annotations() -> None:
    """Test the annotations and labels identifying the builder."""
    assert bundle_object_annotations(None) == {
        "operators.operatorframework.io/builder": "operator-bundle",
    }
    assert bundle_object_annotations("go.kubebuilder.io/v4") == {
        "operators.operatorframework.io/builder": "operator-bundle",
        "operators.operatorframework.io/project_layout": "go.kubebuilder.io/v4",
    }
    assert bundle_metadata_labels("go.kubebuilder.io/v4") == {
        "operators.operatorframework.io.metrics.builder": "operator-bundle",
        "operators.operatorframework.io.metrics.mediatype.v1": "metrics+v1",
        "operators.operatorframework.io.metrics.project_layout": "go.kubebuilder.io/v4",
    }
