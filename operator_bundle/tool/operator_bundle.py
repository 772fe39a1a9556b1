"""Command line tool for generating operator bundles from kubernetes manifests."""

import argparse
import asyncio
import logging
import sys
import traceback

from operator_bundle.exceptions import BundleException
from . import generate, pin

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for generating operator bundles.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    generate.GenerateAction.register(subparsers)
    pin.PinAction.register(subparsers)
    return parser


def main() -> None:
    """Operator-bundle command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args()

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except BundleException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print("operator-bundle error: ", err, file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
