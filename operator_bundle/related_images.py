"""Discovery of the related images an operator declares in its CSV.

Operators reference the images of their operands through environment variables
prefixed with `RELATED_IMAGE_` on the manager containers, e.g.
`RELATED_IMAGE_MEMCACHED=docker.io/memcached:1.6`. Each one is declared in the
ClusterServiceVersion `spec.relatedImages` so the image can be mirrored.
"""

from dataclasses import dataclass
import logging
from typing import Any

from .exceptions import InputException
from .manifest import ManifestSet, object_name

__all__ = [
    "RelatedImage",
    "discover",
]

_LOGGER = logging.getLogger(__name__)

RELATED_IMAGE_PREFIX = "RELATED_IMAGE_"


@dataclass(frozen=True)
class RelatedImage:
    """An image declared as a dependency of the operator."""

    name: str
    image: str

    def as_dict(self) -> dict[str, str]:
        return {"name": self.name, "image": self.image}


@dataclass(frozen=True)
class _Found:
    name: str
    image: str
    container: str


def _format_name(env_name: str) -> str:
    return env_name[len(RELATED_IMAGE_PREFIX) :].replace("_", "-").lower()


def _containers(deployment: dict[str, Any]) -> list[dict[str, Any]]:
    pod_spec = (
        ((deployment.get("spec") or {}).get("template") or {}).get("spec")
    ) or {}
    return list(pod_spec.get("containers") or []) + list(
        pod_spec.get("initContainers") or []
    )


def discover(manifests: ManifestSet) -> list[RelatedImage]:
    """Return the related images referenced by the collected deployments."""
    found: list[_Found] = []
    for deployment in manifests.deployments:
        for container in _containers(deployment):
            for env in container.get("env") or []:
                env_name = env.get("name", "")
                if not env_name.startswith(RELATED_IMAGE_PREFIX):
                    continue
                if "valueFrom" in env:
                    raise InputException(
                        f"Related images with valueFrom field unsupported, found in "
                        f"{env_name} of Deployment {object_name(deployment)}"
                    )
                item = _Found(
                    name=_format_name(env_name),
                    image=env.get("value", ""),
                    container=container.get("name", ""),
                )
                if any(f.name == item.name and f.image == item.image for f in found):
                    continue
                found.append(item)

    images_by_name: dict[str, set[str]] = {}
    for item in found:
        images_by_name.setdefault(item.name, set()).add(item.image)

    result: list[RelatedImage] = []
    seen_images: set[str] = set()
    for item in found:
        if item.image in seen_images:
            _LOGGER.debug(
                "Image %s already declared, skipping name %s", item.image, item.name
            )
            continue
        seen_images.add(item.image)
        name = item.name
        if len(images_by_name[name]) > 1:
            name = f"{item.container}-{name}"
        result.append(RelatedImage(name=name, image=item.image))
    return result
