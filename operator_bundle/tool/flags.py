"""Library for flags shared by the operator-bundle commands."""

from argparse import (
    ArgumentParser,
    Action,
    ArgumentError,
    Namespace,
)
import logging
import pathlib
from typing import Any

from operator_bundle.config import DEFAULT_RESOLVER

_LOGGER = logging.getLogger(__name__)


class KeyValueAppendAction(Action):
    """Append a key=value pair to the argument dict."""

    def __call__(
        self,
        parser: ArgumentParser,
        namespace: Namespace,
        values: Any,
        option_string: str | None = None,
    ) -> None:
        values = values.split(",")
        if not values[0]:
            return
        result = dict(getattr(namespace, self.dest) or {})
        for value in values:
            if "=" not in value:
                raise ArgumentError(
                    self, f"Expected key=value format but got '{value}'"
                )
            k, v = value.split("=", 1)
            result[k] = v
        setattr(namespace, self.dest, result)


def comma_list(value: str) -> list[str]:
    """Parse a comma separated list, ignoring empty items."""
    return [item for item in value.split(",") if item]


def add_output_dir_flag(args: ArgumentParser) -> None:
    """Add the flag for the bundle root directory."""
    args.add_argument(
        "--output-dir",
        type=pathlib.Path,
        default=None,
        help="Directory to write the bundle to, defaults to `bundle`",
    )


def add_resolver_flags(args: ArgumentParser) -> None:
    """Add flags for resolving image tags to digests."""
    args.add_argument(
        "--resolver",
        type=str,
        default=DEFAULT_RESOLVER,
        help="Name of the resolver used to find image digests",
    )
    args.add_argument(
        "--resolver-option",
        dest="resolver_options",
        action=KeyValueAppendAction,
        default={},
        help="Options for the image digest resolver as key=value "
        "e.g. `insecure=true`",
    )
