"""Operator-bundle pin action."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
from typing import cast

from operator_bundle import bundle
from operator_bundle.config import BundleConfig
from operator_bundle.project import package_name_and_layout
from operator_bundle.source import resolve_output_sink

from . import flags

_LOGGER = logging.getLogger(__name__)


class PinAction:
    """Operator-bundle pin action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "pin",
                help="Pin the images of an existing bundle to digests",
                description="""Replace the image tags in the manifests of an
                    existing bundle with the digests they currently point to.""",
            ),
        )
        flags.add_output_dir_flag(args)
        flags.add_resolver_flags(args)
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        output_dir: pathlib.Path | None,
        resolver: str,
        resolver_options: dict[str, str],
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        package_name, layout = await package_name_and_layout(None, pathlib.Path.cwd())
        bundle_config = BundleConfig(
            package_name=package_name,
            layout=layout,
            sink=resolve_output_sink(output_dir=output_dir),
            resolver=resolver,
            resolver_options=resolver_options,
        )
        updated = await bundle.pin(bundle_config)
        _LOGGER.info("Pinned images in %d manifests", updated)
