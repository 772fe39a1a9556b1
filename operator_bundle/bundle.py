"""Library for generating an operator bundle.

This is the entry point that ties the stages together. Manifests are collected
from the input source, merged with a ClusterServiceVersion base when the input
has no CSV of its own, synthesized into the final CSV and written to the output
sink along with every other manifest. Images may then be pinned to digests and
an embedded scorecard configuration is written with the bundle.

Example usage:

```python
from operator_bundle import bundle, config, source

bundle_config = config.BundleConfig(
    package_name="memcached-operator",
    version="0.0.1",
    source=source.DirectorySource(Path("deploy")),
    channels=["alpha"],
)
await bundle.generate_manifests(bundle_config)
await bundle.generate_metadata(bundle_config)
```
"""

from collections.abc import Callable
import datetime
import logging
from pathlib import Path
from typing import Any

from aiofiles.ospath import exists, isdir

from . import collector, related_images, scorecard
from .bases import load_base_at
from .clusterserviceversion import Generator
from .config import BundleConfig
from .exceptions import BaseNotFoundError, ConfigException
from .image import DigestResolver, get_resolver, pin_images
from .metadata import BundleMetadata
from .metadata import generate_metadata as write_metadata
from .project import bundle_metadata_labels, bundle_object_annotations
from .source import DirectoryPairSource, DirectorySink, DirectorySource
from .writer import new_writer

__all__ = [
    "generate_manifests",
    "generate_metadata",
    "pin",
]

_LOGGER = logging.getLogger(__name__)


def _directory_sink(bundle_config: BundleConfig, stage: str) -> DirectorySink:
    if not isinstance(bundle_config.sink, DirectorySink):
        raise ConfigException(f"{stage} requires an output directory")
    return bundle_config.sink


async def generate_manifests(
    bundle_config: BundleConfig,
    resolver: DigestResolver | None = None,
    clock: Callable[[], datetime.datetime] | None = None,
) -> dict[str, Any]:
    """Generate the bundle manifests and return the written CSV."""
    if bundle_config.source is None:
        raise ConfigException(
            "one of stdin, --input-dir, or --deploy-dir (and optionally --crds-dir) "
            "must be set"
        )
    _LOGGER.info("Generating bundle manifests")
    manifests = await collector.collect(bundle_config.source)

    if not manifests.cluster_service_versions:
        try:
            base = await load_base_at(bundle_config.base_csv_path)
        except BaseNotFoundError as err:
            _LOGGER.info("Building a ClusterServiceVersion without an existing base")
            _LOGGER.debug("%s", err)
        else:
            manifests.cluster_service_versions.append(base)

    generator = Generator(
        operator_name=bundle_config.package_name,
        manifests=manifests,
        version=bundle_config.version,
        annotations=bundle_object_annotations(bundle_config.layout),
        extra_service_accounts=list(bundle_config.extra_service_accounts),
        related_images=related_images.discover(manifests),
    )
    if clock is not None:
        generator.clock = clock

    sink = bundle_config.sink
    ignore_created_at = False
    if bundle_config.ignore_if_only_created_at_changed and isinstance(
        sink, DirectorySink
    ):
        ignore_created_at = await exists(sink.root)

    writer = new_writer(sink)
    csv = await generator.generate(
        writer, ignore_if_only_created_at_changed=ignore_created_at
    )
    await writer.write_manifests(manifests)
    await writer.close()

    if not isinstance(sink, DirectorySink):
        return csv

    if bundle_config.use_image_digests:
        if resolver is None:
            resolver = get_resolver(
                bundle_config.resolver, bundle_config.resolver_options
            )
        await pin_images(sink.manifests_dir, resolver)

    if manifests.scorecard_config is not None:
        config = scorecard.parse_scorecard_config(manifests.scorecard_config)
        await scorecard.write_scorecard_config(sink.root, config)

    _LOGGER.info("Bundle manifests generated successfully in %s", sink.root)
    return csv


def _input_dir(bundle_config: BundleConfig) -> Path | None:
    source = bundle_config.source
    if isinstance(source, DirectorySource):
        return source.path
    if isinstance(source, DirectoryPairSource):
        return source.deploy_dir
    return None


async def generate_metadata(bundle_config: BundleConfig) -> bool:
    """Generate the bundle metadata and bundle.Dockerfile.

    Existing metadata is looked for in the input directory when there is one
    and otherwise in the output directory. Returns true if metadata was written.
    """
    _LOGGER.info("Generating bundle metadata")
    sink = _directory_sink(bundle_config, "Generating bundle metadata")
    bundle_root = _input_dir(bundle_config) or sink.root
    if not await isdir(bundle_root):
        bundle_root = sink.root
    has_scorecard = await exists(scorecard.config_path(sink.root)) or await exists(
        scorecard.config_path(bundle_root)
    )
    metadata = BundleMetadata(
        package_name=bundle_config.package_name,
        channels=list(bundle_config.channels),
        default_channel=bundle_config.default_channel,
        labels=bundle_metadata_labels(bundle_config.layout),
        has_scorecard=has_scorecard,
    )
    return await write_metadata(
        sink.root,
        metadata,
        bundle_config.dockerfile,
        overwrite=bundle_config.overwrite,
        bundle_root=bundle_root,
    )


async def pin(
    bundle_config: BundleConfig, resolver: DigestResolver | None = None
) -> int:
    """Pin the images of an existing bundle to digests."""
    sink = _directory_sink(bundle_config, "Pinning images")
    if resolver is None:
        resolver = get_resolver(bundle_config.resolver, bundle_config.resolver_options)
    return await pin_images(sink.manifests_dir, resolver)
