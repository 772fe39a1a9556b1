"""Loading of hand-authored ClusterServiceVersion bases.

A base contains metadata written by hand, like the description, icon and
maintainers, that is merged with data derived from the collected manifests.
A missing base is expected and reported as `BaseNotFoundError` while a base
that exists but can't be parsed is an `InputException`.
"""

import logging
from pathlib import Path
from typing import Any

import aiofiles
from aiofiles.ospath import exists

from .exceptions import BaseNotFoundError, BundleIOException, InputException
from .manifest import CSV_KIND, load_documents

__all__ = [
    "load_base_at",
]

_LOGGER = logging.getLogger(__name__)


async def load_base_at(path: Path) -> dict[str, Any]:
    """Return the ClusterServiceVersion base stored at the path."""
    if not await exists(path):
        raise BaseNotFoundError(f"No ClusterServiceVersion base found at {path}")
    try:
        async with aiofiles.open(str(path)) as base_file:
            content = await base_file.read()
    except OSError as err:
        raise BundleIOException(f"Unable to read CSV base {path}: {err}") from err
    docs = load_documents(content, str(path))
    if len(docs) != 1:
        raise InputException(
            f"Expected a single document in CSV base {path} but found {len(docs)}"
        )
    base = docs[0]
    if base["kind"] != CSV_KIND:
        raise InputException(
            f"Expected a {CSV_KIND} in CSV base {path} but found {base['kind']}"
        )
    _LOGGER.debug("Loaded ClusterServiceVersion base %s", path)
    return base
