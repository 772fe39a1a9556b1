"""Operator-bundle generate action."""

from argparse import (
    ArgumentParser,
    _SubParsersAction as SubParsersAction,
    BooleanOptionalAction,
)
import logging
import pathlib
import sys
from typing import cast

from operator_bundle import bundle
from operator_bundle.config import (
    DEFAULT_DOCKERFILE,
    DEFAULT_KUSTOMIZE_DIR,
    BundleConfig,
    validate_version,
)
from operator_bundle.exceptions import ConfigException
from operator_bundle.project import package_name_and_layout
from operator_bundle.source import (
    DirectorySource,
    InputSource,
    is_pipe,
    resolve_input_source,
    resolve_output_sink,
)

from . import flags

_LOGGER = logging.getLogger(__name__)


DESCRIPTION = """Generate the manifests, metadata and bundle.Dockerfile of an
    operator bundle. Manifests are read from stdin, typically piped from
    `kustomize build config/manifests`, or from a directory. A
    ClusterServiceVersion is built from the manifests and a base in the
    kustomize directory and written to the bundle with the other manifests.
    Existing bundle metadata is only replaced with --overwrite."""


class GenerateAction:
    """Operator-bundle generate action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "generate",
                help="Generate an operator bundle from kubernetes manifests",
                description=DESCRIPTION,
            ),
        )
        args.add_argument(
            "--manifests",
            default=False,
            action="store_true",
            help="Generate the bundle manifests",
        )
        args.add_argument(
            "--metadata",
            default=False,
            action="store_true",
            help="Generate the bundle metadata and bundle.Dockerfile",
        )
        args.add_argument(
            "--package",
            type=str,
            default=None,
            help="Bundle package name, defaults to the project name",
        )
        args.add_argument(
            "--version",
            type=str,
            default=None,
            help="Semantic version of the bundle",
        )
        args.add_argument(
            "--input-dir",
            type=pathlib.Path,
            default=None,
            help="Directory to read cluster-ready operator manifests from",
        )
        args.add_argument(
            "--deploy-dir",
            type=pathlib.Path,
            default=None,
            help="Directory to read operator manifests from (deprecated)",
        )
        args.add_argument(
            "--crds-dir",
            type=pathlib.Path,
            default=None,
            help="Directory to read CustomResourceDefinitions from (deprecated)",
        )
        args.add_argument(
            "--kustomize-dir",
            type=pathlib.Path,
            default=DEFAULT_KUSTOMIZE_DIR,
            help="Directory containing the ClusterServiceVersion base in `bases/`",
        )
        flags.add_output_dir_flag(args)
        args.add_argument(
            "--stdout",
            default=False,
            action="store_true",
            help="Write the bundle manifests to stdout",
        )
        args.add_argument(
            "--channels",
            type=flags.comma_list,
            default=[],
            help="A comma separated list of channels the bundle belongs to",
        )
        args.add_argument(
            "--default-channel",
            type=str,
            default=None,
            help="The default channel of the package",
        )
        args.add_argument(
            "--overwrite",
            default=False,
            action=BooleanOptionalAction,
            help="Overwrite the bundle metadata and Dockerfile if they exist",
        )
        args.add_argument(
            "--ignore-if-only-created-at-changed",
            default=False,
            action="store_true",
            help="Keep the existing ClusterServiceVersion if only createdAt changed",
        )
        args.add_argument(
            "--extra-service-accounts",
            type=flags.comma_list,
            default=[],
            help="A comma separated list of service accounts to add RBAC for",
        )
        args.add_argument(
            "--use-image-digests",
            default=False,
            action="store_true",
            help="Pin image tags in the bundle manifests to digests",
        )
        flags.add_resolver_flags(args)
        args.add_argument(
            "--dockerfile",
            type=pathlib.Path,
            default=DEFAULT_DOCKERFILE,
            help="Path of the bundle.Dockerfile to write",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        manifests: bool,
        metadata: bool,
        package: str | None,
        version: str | None,
        input_dir: pathlib.Path | None,
        deploy_dir: pathlib.Path | None,
        crds_dir: pathlib.Path | None,
        kustomize_dir: pathlib.Path,
        output_dir: pathlib.Path | None,
        stdout: bool,
        channels: list[str],
        default_channel: str | None,
        overwrite: bool,
        ignore_if_only_created_at_changed: bool,
        extra_service_accounts: list[str],
        use_image_digests: bool,
        resolver: str,
        resolver_options: dict[str, str],
        dockerfile: pathlib.Path,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        if version:
            validate_version(version)
        if stdout and metadata:
            raise ConfigException("--metadata cannot be set if writing to stdout")
        if not manifests and not metadata:
            manifests = True
            metadata = not stdout

        source: InputSource | None = None
        if manifests:
            source = resolve_input_source(
                stdin=sys.stdin if is_pipe(sys.stdin) else None,
                input_dir=input_dir,
                deploy_dir=deploy_dir,
                crds_dir=crds_dir,
            )
        elif input_dir is not None:
            source = DirectorySource(input_dir)
        sink = resolve_output_sink(
            stdout=sys.stdout if stdout else None, output_dir=output_dir
        )

        package_name, layout = await package_name_and_layout(
            package, pathlib.Path.cwd()
        )
        bundle_config = BundleConfig(
            package_name=package_name,
            layout=layout,
            version=version,
            source=source,
            sink=sink,
            kustomize_dir=kustomize_dir,
            channels=channels,
            default_channel=default_channel,
            overwrite=overwrite,
            ignore_if_only_created_at_changed=ignore_if_only_created_at_changed,
            extra_service_accounts=extra_service_accounts,
            use_image_digests=use_image_digests,
            resolver=resolver,
            resolver_options=resolver_options,
            dockerfile=dockerfile,
        )
        _LOGGER.debug("Generating bundle for package %s", package_name)

        if manifests:
            await bundle.generate_manifests(bundle_config)
        if metadata:
            await bundle.generate_metadata(bundle_config)
