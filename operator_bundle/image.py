"""Helper functions for pinning container images in bundle manifests.

Images in a bundle are usually referenced by tag, e.g. `quay.io/example/op:v0.1.0`.
Disconnected installs need every image pinned to the digest of its manifest,
e.g. `quay.io/example/op@sha256:...`. Pinning scans all the manifests written
to the bundle for image references, resolves each tag to a digest with a
`DigestResolver` and rewrites the manifests that changed.

Example usage:

```python
from operator_bundle import image

resolver = image.get_resolver("oras", {"insecure": "true"})
await image.pin_images(Path("bundle/manifests"), resolver)
```
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
import hashlib
import logging
from pathlib import Path
from typing import Any

from aiofiles.ospath import isdir
from oras.client import OrasClient
import requests

from .collector import manifest_files
from .exceptions import BundleIOException, ConfigException, ImageResolutionException
from .manifest import (
    dump_documents,
    dump_document,
    read_documents,
    write_text,
)
from .related_images import RELATED_IMAGE_PREFIX

__all__ = [
    "ImageReference",
    "DigestResolver",
    "OrasResolver",
    "get_resolver",
    "extract_images",
    "pin_images",
]

_LOGGER = logging.getLogger(__name__)

# Default image key for most object types.
IMAGE_KEY = "image"

# Annotation on a CSV with the operator image
CONTAINER_IMAGE_ANNOTATION = "containerImage"

DEFAULT_REGISTRY = "docker.io"
DEFAULT_TAG = "latest"
DOCKER_HUB_HOST = "registry-1.docker.io"
DIGEST_HEADER = "Docker-Content-Digest"

MANIFEST_MEDIA_TYPES = [
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.docker.distribution.manifest.v2+json",
]


@dataclass(frozen=True)
class ImageReference:
    """A parsed container image pull specification."""

    registry: str | None
    """The registry host, or None for the default registry."""

    repository: str
    """The repository within the registry."""

    tag: str | None = None
    digest: str | None = None

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """Parse a `[registry/]repository[:tag][@digest]` reference."""
        if not reference or reference != reference.strip():
            raise ImageResolutionException(reference, "Invalid image reference")
        name, _, digest = reference.partition("@")
        tag = None
        last = name.rsplit("/", 1)[-1]
        if ":" in last:
            name, tag = name.rsplit(":", 1)
        registry = None
        first, sep, rest = name.partition("/")
        if sep and ("." in first or ":" in first or first == "localhost"):
            registry, name = first, rest
        if not name or (digest and not digest.startswith("sha256:")):
            raise ImageResolutionException(reference, "Invalid image reference")
        return cls(registry=registry, repository=name, tag=tag, digest=digest or None)

    @property
    def is_digest(self) -> bool:
        """Return true if the reference is already pinned to a digest."""
        return self.digest is not None

    @property
    def name(self) -> str:
        """Return the reference without tag or digest."""
        if self.registry:
            return f"{self.registry}/{self.repository}"
        return self.repository

    def with_digest(self, digest: str) -> "ImageReference":
        """Return the reference pinned to the digest, dropping the tag."""
        return ImageReference(
            registry=self.registry, repository=self.repository, digest=digest
        )

    def __str__(self) -> str:
        if self.digest:
            return f"{self.name}@{self.digest}"
        if self.tag:
            return f"{self.name}:{self.tag}"
        return self.name


class DigestResolver(ABC):
    """Resolves an image tag to the digest of its manifest."""

    @abstractmethod
    async def resolve(self, reference: ImageReference) -> ImageReference:
        """Return the reference pinned to a digest."""


class OrasResolver(DigestResolver):
    """Resolves digests with the OCI distribution API of the image registry."""

    def __init__(self, insecure: bool = False, tls_verify: bool = True) -> None:
        self._client = OrasClient(insecure=insecure, tls_verify=tls_verify)

    def _target(self, reference: ImageReference) -> str:
        registry = reference.registry or DEFAULT_REGISTRY
        repository = reference.repository
        if registry == DEFAULT_REGISTRY:
            registry = DOCKER_HUB_HOST
            if "/" not in repository:
                repository = f"library/{repository}"
        return f"{registry}/{repository}:{reference.tag or DEFAULT_TAG}"

    async def resolve(self, reference: ImageReference) -> ImageReference:
        if reference.is_digest:
            return reference
        target = self._target(reference)
        _LOGGER.debug("Resolving %s as %s", reference, target)
        try:
            container = self._client.get_container(target)
            url = f"{self._client.prefix}://{container.manifest_url()}"
            response = self._client.do_request(
                url, "GET", headers={"Accept": ",".join(MANIFEST_MEDIA_TYPES)}
            )
        except (requests.RequestException, ValueError) as err:
            raise ImageResolutionException(str(reference), str(err)) from err
        if response.status_code != 200:
            raise ImageResolutionException(
                str(reference),
                f"Registry returned {response.status_code}: {response.text[:200]}",
            )
        if not (digest := response.headers.get(DIGEST_HEADER)):
            digest = f"sha256:{hashlib.sha256(response.content).hexdigest()}"
        return reference.with_digest(digest)


def _parse_bool(name: str, value: str) -> bool:
    if value.lower() in ("true", "1", "yes"):
        return True
    if value.lower() in ("false", "0", "no"):
        return False
    raise ConfigException(f"Invalid value for resolver option {name}: {value}")


def get_resolver(name: str, options: dict[str, str] | None = None) -> DigestResolver:
    """Return the digest resolver with the specified name."""
    options = dict(options or {})
    if name != "oras":
        raise ConfigException(f"Unknown image digest resolver: {name}")
    kwargs: dict[str, Any] = {}
    for key in ("insecure", "tls_verify"):
        if (value := options.pop(key, None)) is not None:
            kwargs[key] = _parse_bool(key, value)
    if options:
        raise ConfigException(
            f"Unknown options for resolver {name}: {', '.join(sorted(options))}"
        )
    return OrasResolver(**kwargs)


def _image_fields(node: Any) -> Iterator[tuple[dict[str, Any], str]]:
    """Yield (parent, key) pairs of every image reference in the object."""
    if isinstance(node, list):
        for item in node:
            yield from _image_fields(item)
        return
    if not isinstance(node, dict):
        return
    env_name = node.get("name")
    if (
        isinstance(env_name, str)
        and env_name.startswith(RELATED_IMAGE_PREFIX)
        and isinstance(node.get("value"), str)
    ):
        yield node, "value"
    for key, value in node.items():
        if key == IMAGE_KEY:
            if isinstance(value, dict) and isinstance(value.get("reference"), str):
                yield value, "reference"
            elif isinstance(value, str):
                yield node, key
            continue
        if (
            key == "annotations"
            and isinstance(value, dict)
            and isinstance(value.get(CONTAINER_IMAGE_ANNOTATION), str)
        ):
            yield value, CONTAINER_IMAGE_ANNOTATION
        yield from _image_fields(value)


def extract_images(doc: dict[str, Any]) -> list[str]:
    """Return the image references in the object in order of appearance."""
    images: list[str] = []
    for parent, key in _image_fields(doc):
        if (value := parent[key]) and value not in images:
            images.append(value)
    return images


async def pin_images(manifests_dir: Path, resolver: DigestResolver) -> int:
    """Replace image tags with digests in all manifests in the directory.

    All tags are resolved before any file is rewritten, so a resolution failure
    leaves every file untouched. Returns the number of files rewritten.
    """
    if not await isdir(manifests_dir):
        raise BundleIOException(f"Manifests directory does not exist: {manifests_dir}")
    _LOGGER.info("pinning image versions to digests instead of tags")
    files = {path: await read_documents(path) for path in manifest_files(manifests_dir)}

    pinned: dict[str, str] = {}
    for docs in files.values():
        for doc in docs:
            for image in extract_images(doc):
                if image in pinned:
                    continue
                reference = ImageReference.parse(image)
                if reference.is_digest:
                    continue
                resolved = await resolver.resolve(reference)
                _LOGGER.debug("Resolved %s to %s", image, resolved)
                pinned[image] = str(resolved)

    updated = 0
    for path, docs in files.items():
        changed = False
        for doc in docs:
            for parent, key in _image_fields(doc):
                if (replacement := pinned.get(parent[key])) is not None:
                    parent[key] = replacement
                    changed = True
        if not changed:
            continue
        _LOGGER.debug("Writing pinned images to %s", path)
        content = dump_document(docs[0]) if len(docs) == 1 else dump_documents(docs)
        await write_text(path, content)
        updated += 1
    return updated
