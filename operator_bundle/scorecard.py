"""Scorecard test configuration embedded in the input manifests.

A scorecard `Configuration` passed alongside the manifests, typically from
`config/scorecard`, is written to the bundle at `tests/scorecard/config.yaml`
so the tests are shipped with the bundle image.
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any, Optional

from mashumaro import DataClassDictMixin, field_options
from mashumaro.config import BaseConfig
from mashumaro.exceptions import MissingField, InvalidFieldValue

from .exceptions import InputException
from .manifest import dump_document, write_text

__all__ = [
    "ScorecardConfiguration",
    "parse_scorecard_config",
    "write_scorecard_config",
    "config_path",
]

_LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = "tests/scorecard/"
CONFIG_FILE_NAME = "config.yaml"


@dataclass
class _Base(DataClassDictMixin):
    class Config(BaseConfig):
        omit_none = True
        serialize_by_alias = True


@dataclass
class ObjectMeta(_Base):
    """Metadata of the configuration."""

    name: str = ""


@dataclass
class TestStorage(_Base):
    """Storage for test output gathered from the test pods."""

    spec: dict[str, Any] = field(default_factory=dict)


@dataclass
class TestConfiguration(_Base):
    """A single scorecard test image and its entrypoint."""

    image: str
    """The test image."""

    entrypoint: list[str] = field(default_factory=list)
    """Command and arguments run in the test image."""

    labels: Optional[dict[str, str]] = None
    """Labels used to select the test."""

    storage: Optional[TestStorage] = None


@dataclass
class StageConfiguration(_Base):
    """A group of tests run together."""

    tests: list[TestConfiguration] = field(default_factory=list)

    parallel: Optional[bool] = None
    """Run the tests of the stage in parallel."""


@dataclass
class ScorecardConfiguration(_Base):
    """A scorecard.operatorframework.io/v1alpha3 Configuration."""

    api_version: str = field(metadata=field_options(alias="apiVersion"))
    kind: str
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    stages: list[StageConfiguration] = field(default_factory=list)
    storage: Optional[TestStorage] = None
    service_account: Optional[str] = field(
        metadata=field_options(alias="serviceaccount"), default=None
    )

    @property
    def is_empty(self) -> bool:
        """A configuration without a name is not written."""
        return not self.metadata.name


def parse_scorecard_config(doc: dict[str, Any]) -> ScorecardConfiguration:
    """Parse a scorecard Configuration from a raw object."""
    try:
        return ScorecardConfiguration.from_dict(doc)
    except (MissingField, InvalidFieldValue) as err:
        raise InputException(f"Invalid scorecard configuration: {err}") from err


def config_path(root: Path) -> Path:
    """Return the path of the scorecard configuration within a bundle."""
    return root / DEFAULT_CONFIG_DIR / CONFIG_FILE_NAME


async def write_scorecard_config(
    root: Path, config: ScorecardConfiguration | None
) -> bool:
    """Write the scorecard configuration into the bundle.

    Returns false without writing anything when the configuration is empty.
    """
    if config is None or config.is_empty:
        return False
    path = config_path(root)
    _LOGGER.debug("Writing scorecard configuration to %s", path)
    await write_text(path, dump_document(config.to_dict()))
    return True
