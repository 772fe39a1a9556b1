"""Discovery of the operator project the bundle is generated for.

Projects scaffolded by kubebuilder or operator-sdk have a `PROJECT` file at the
root which records the project name and layout, e.g.:

```yaml
domain: example.com
layout:
- go.kubebuilder.io/v4
projectName: memcached-operator
version: "3"
```

The project name is the default package name of the bundle and the layout is
recorded in the bundle annotations.
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any, Optional

import aiofiles
from aiofiles.ospath import exists
from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.exceptions import MissingField, InvalidFieldValue
import yaml

from .exceptions import BundleIOException, InputException

__all__ = [
    "ProjectConfig",
    "read_project_config",
    "package_name_and_layout",
    "bundle_object_annotations",
    "bundle_metadata_labels",
]

_LOGGER = logging.getLogger(__name__)

PROJECT_FILE = "PROJECT"
BUILDER = "operator-bundle"

BUILDER_OBJECT_ANNOTATION = "operators.operatorframework.io/builder"
LAYOUT_OBJECT_ANNOTATION = "operators.operatorframework.io/project_layout"
BUILDER_LABEL = "operators.operatorframework.io.metrics.builder"
MEDIATYPE_LABEL = "operators.operatorframework.io.metrics.mediatype.v1"
LAYOUT_LABEL = "operators.operatorframework.io.metrics.project_layout"
METRICS_MEDIATYPE = "metrics+v1"


@dataclass
class ProjectConfig(DataClassDictMixin):
    """The parts of a PROJECT file used for bundles."""

    project_name: Optional[str] = field(
        metadata=field_options(alias="projectName"), default=None
    )
    """The name of the project."""

    layout: list[str] = field(default_factory=list)
    """The plugin keys used to scaffold the project."""

    domain: Optional[str] = None
    """The domain of the project's API groups."""

    version: Optional[str] = None
    """The version of the PROJECT file format."""

    @classmethod
    def __pre_deserialize__(cls, d: dict[Any, Any]) -> dict[Any, Any]:
        # Version 2 projects have a single layout string
        if isinstance(layout := d.get("layout"), str):
            return {**d, "layout": [layout]}
        return d

    @property
    def project_layout(self) -> str | None:
        """Return the layout as a single comma separated string."""
        if not self.layout:
            return None
        return ",".join(self.layout)

    class Config(BaseConfig):
        omit_none = True


async def read_project_config(project_dir: Path) -> ProjectConfig | None:
    """Return the PROJECT file contents, or None if the project has none."""
    path = project_dir / PROJECT_FILE
    if not await exists(path):
        return None
    try:
        async with aiofiles.open(str(path)) as project_file:
            content = await project_file.read()
    except OSError as err:
        raise BundleIOException(f"Unable to read {path}: {err}") from err
    try:
        data = yaml.safe_load(content)
        if not isinstance(data, dict):
            raise InputException(f"Invalid project file {path}: {data}")
        return ProjectConfig.from_dict(data)
    except (yaml.YAMLError, MissingField, InvalidFieldValue) as err:
        raise InputException(f"Unable to parse project file {path}: {err}") from err


async def package_name_and_layout(
    package_name: str | None, project_dir: Path
) -> tuple[str, str | None]:
    """Return the bundle package name and project layout.

    An explicit package name wins over the PROJECT file's project name. When
    there is no PROJECT file either, the name of the project directory is used.
    """
    layout: str | None = None
    if (config := await read_project_config(project_dir)) is not None:
        layout = config.project_layout
        if not package_name:
            package_name = config.project_name
    if not package_name:
        package_name = project_dir.resolve().name.lower()
        _LOGGER.debug("Using directory name %s as the package name", package_name)
    return package_name, layout


def bundle_object_annotations(layout: str | None) -> dict[str, str]:
    """Return annotations identifying the tool that built a bundle object."""
    annotations = {BUILDER_OBJECT_ANNOTATION: BUILDER}
    if layout:
        annotations[LAYOUT_OBJECT_ANNOTATION] = layout
    return annotations


def bundle_metadata_labels(layout: str | None) -> dict[str, str]:
    """Return the metrics labels added to the bundle metadata."""
    labels = {BUILDER_LABEL: BUILDER, MEDIATYPE_LABEL: METRICS_MEDIATYPE}
    if layout:
        labels[LAYOUT_LABEL] = layout
    return labels
