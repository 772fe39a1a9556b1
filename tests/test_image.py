"""Tests for image pinning."""

import hashlib
from pathlib import Path

import pytest
import requests
import yaml

from operator_bundle.exceptions import ConfigException, ImageResolutionException
from operator_bundle.image import (
    DigestResolver,
    ImageReference,
    OrasResolver,
    extract_images,
    get_resolver,
    pin_images,
)

DIGEST = "sha256:" + "a" * 64
OTHER_DIGEST = "sha256:" + "b" * 64

CSV = {
    "apiVersion": "operators.coreos.com/v1alpha1",
    "kind": "ClusterServiceVersion",
    "metadata": {
        "name": "memcached-operator.v0.0.1",
        "annotations": {"containerImage": "quay.io/example/memcached-operator:v0.0.1"},
    },
    "spec": {
        "install": {
            "spec": {
                "deployments": [
                    {
                        "name": "controller-manager",
                        "spec": {
                            "template": {
                                "spec": {
                                    "containers": [
                                        {
                                            "name": "manager",
                                            "image": "quay.io/example/memcached-operator:v0.0.1",
                                            "env": [
                                                {
                                                    "name": "RELATED_IMAGE_MEMCACHED",
                                                    "value": "docker.io/memcached:1.6",
                                                },
                                                {"name": "OTHER", "value": "not-an-image"},
                                            ],
                                        },
                                        {
                                            "name": "proxy",
                                            "image": f"gcr.io/kubebuilder/proxy@{OTHER_DIGEST}",
                                        },
                                    ]
                                }
                            }
                        },
                    }
                ]
            }
        },
        "relatedImages": [{"name": "memcached", "image": "docker.io/memcached:1.6"}],
    },
}


class FakeResolver(DigestResolver):
    """Resolver that returns a fixed digest for every tag."""

    def __init__(self, fail: bool = False) -> None:
        self.resolved: list[str] = []
        self.fail = fail

    async def resolve(self, reference: ImageReference) -> ImageReference:
        if self.fail:
            raise ImageResolutionException(str(reference), "not found")
        self.resolved.append(str(reference))
        return reference.with_digest(DIGEST)


@pytest.mark.parametrize(
    ("reference", "expected"),
    [
        ("memcached", ImageReference(None, "memcached")),
        ("memcached:1.6", ImageReference(None, "memcached", tag="1.6")),
        (
            "quay.io/example/op:v0.0.1",
            ImageReference("quay.io", "example/op", tag="v0.0.1"),
        ),
        (
            "localhost:5000/op:latest",
            ImageReference("localhost:5000", "op", tag="latest"),
        ),
        ("example/op", ImageReference(None, "example/op")),
        (
            f"quay.io/example/op:v1@{DIGEST}",
            ImageReference("quay.io", "example/op", tag="v1", digest=DIGEST),
        ),
    ],
)
def test_parse_reference(reference: str, expected: ImageReference) -> None:
    """Test parsing image references."""
    assert ImageReference.parse(reference) == expected


@pytest.mark.parametrize("reference", ["", " memcached", "memcached@md5:abc"])
def test_parse_invalid_reference(reference: str) -> None:
    """Test references that can't be parsed."""
    with pytest.raises(ImageResolutionException):
        ImageReference.parse(reference)


def test_with_digest() -> None:
    """The tag is dropped when pinned to a digest."""
    reference = ImageReference.parse("quay.io/example/op:v0.0.1")
    assert not reference.is_digest
    pinned = reference.with_digest(DIGEST)
    assert pinned.is_digest
    assert str(pinned) == f"quay.io/example/op@{DIGEST}"


def test_extract_images() -> None:
    """Test images are found in image fields, env and annotations."""
    assert extract_images(CSV) == [
        "quay.io/example/memcached-operator:v0.0.1",
        "docker.io/memcached:1.6",
        f"gcr.io/kubebuilder/proxy@{OTHER_DIGEST}",
    ]


def test_extract_image_volume() -> None:
    """Image volumes hold the image in a reference field."""
    pod = {
        "apiVersion": "v1",
        "kind": "Pod",
        "spec": {"volumes": [{"name": "data", "image": {"reference": "data:v1"}}]},
    }
    assert extract_images(pod) == ["data:v1"]


async def test_pin_images(tmp_path: Path) -> None:
    """Tags are replaced with digests and unchanged files are not rewritten."""
    csv_path = tmp_path / "example.clusterserviceversion.yaml"
    csv_path.write_text(yaml.safe_dump(CSV))
    pinned_path = tmp_path / "pinned_v1_pod.yaml"
    pinned_content = yaml.safe_dump(
        {
            "apiVersion": "v1",
            "kind": "Pod",
            "metadata": {"name": "pinned"},
            "spec": {"containers": [{"name": "a", "image": f"busybox@{DIGEST}"}]},
        }
    )
    pinned_path.write_text(pinned_content)

    resolver = FakeResolver()
    assert await pin_images(tmp_path, resolver) == 1
    # Each tag is only resolved once
    assert resolver.resolved == [
        "quay.io/example/memcached-operator:v0.0.1",
        "docker.io/memcached:1.6",
    ]
    assert pinned_path.read_text() == pinned_content

    csv = yaml.safe_load(csv_path.read_text())
    assert extract_images(csv) == [
        f"quay.io/example/memcached-operator@{DIGEST}",
        f"docker.io/memcached@{DIGEST}",
        f"gcr.io/kubebuilder/proxy@{OTHER_DIGEST}",
    ]
    assert csv["spec"]["relatedImages"] == [
        {"name": "memcached", "image": f"docker.io/memcached@{DIGEST}"}
    ]

    # Pinning is idempotent
    resolver = FakeResolver()
    assert await pin_images(tmp_path, resolver) == 0
    assert not resolver.resolved


async def test_pin_images_failure(tmp_path: Path) -> None:
    """A resolution failure leaves the manifests as they were."""
    csv_path = tmp_path / "example.clusterserviceversion.yaml"
    content = yaml.safe_dump(CSV)
    csv_path.write_text(content)
    with pytest.raises(ImageResolutionException, match="not found"):
        await pin_images(tmp_path, FakeResolver(fail=True))
    assert csv_path.read_text() == content


def test_get_resolver() -> None:
    """Test resolvers are looked up by name with options."""
    assert isinstance(get_resolver("oras"), OrasResolver)
    assert isinstance(
        get_resolver("oras", {"insecure": "true", "tls_verify": "false"}), OrasResolver
    )
    with pytest.raises(ConfigException, match="Unknown image digest resolver"):
        get_resolver("crane")
    with pytest.raises(ConfigException, match="Unknown options"):
        get_resolver("oras", {"username": "admin"})
    with pytest.raises(ConfigException, match="Invalid value"):
        get_resolver("oras", {"insecure": "maybe"})


def _response(
    status_code: int = 200, content: bytes = b"{}", headers: dict[str, str] | None = None
) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response._content = content
    response.headers.update(headers or {})
    response.encoding = "utf-8"
    return response


class FakeRegistry:
    """Records the requests sent to the registry."""

    def __init__(self, response: requests.Response | Exception) -> None:
        self.response = response
        self.requests: list[tuple[str, str, dict[str, str]]] = []

    def do_request(  # type: ignore[no-untyped-def]
        self, url: str, method: str = "GET", headers=None, **kwargs
    ) -> requests.Response:
        self.requests.append((url, method, headers or {}))
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _oras_resolver(
    monkeypatch: pytest.MonkeyPatch, response: requests.Response | Exception
) -> tuple[OrasResolver, FakeRegistry]:
    resolver = OrasResolver()
    registry = FakeRegistry(response)
    monkeypatch.setattr(resolver._client, "do_request", registry.do_request)
    return resolver, registry


@pytest.mark.parametrize(
    ("reference", "url"),
    [
        (
            "quay.io/example/op:v1",
            "https://quay.io/v2/example/op/manifests/v1",
        ),
        (
            "memcached:1.6",
            "https://registry-1.docker.io/v2/library/memcached/manifests/1.6",
        ),
        (
            "docker.io/bitnami/redis",
            "https://registry-1.docker.io/v2/bitnami/redis/manifests/latest",
        ),
    ],
    ids=["quay", "docker-hub-library", "docker-hub-default-tag"],
)
async def test_oras_resolve_digest_header(
    monkeypatch: pytest.MonkeyPatch, reference: str, url: str
) -> None:
    """Test the digest is read from the manifest response header."""
    resolver, registry = _oras_resolver(
        monkeypatch, _response(headers={"Docker-Content-Digest": DIGEST})
    )
    pinned = await resolver.resolve(ImageReference.parse(reference))
    assert pinned.digest == DIGEST
    assert pinned.tag is None
    assert pinned.name == ImageReference.parse(reference).name

    assert len(registry.requests) == 1
    request_url, method, headers = registry.requests[0]
    assert request_url == url
    assert method == "GET"
    accept = headers["Accept"].split(",")
    assert "application/vnd.oci.image.index.v1+json" in accept
    assert "application/vnd.docker.distribution.manifest.v2+json" in accept


def test_oras_target() -> None:
    """Test references are mapped to the registry hosts that serve them."""
    resolver = OrasResolver()
    assert (
        resolver._target(ImageReference.parse("memcached:1.6"))
        == "registry-1.docker.io/library/memcached:1.6"
    )
    assert (
        resolver._target(ImageReference.parse("quay.io/example/op:v1"))
        == "quay.io/example/op:v1"
    )
    assert (
        resolver._target(ImageReference.parse("localhost:5000/op"))
        == "localhost:5000/op:latest"
    )


async def test_oras_resolve_content_digest(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test the digest of the manifest body is used without a digest header."""
    content = b'{"schemaVersion": 2}'
    resolver, _ = _oras_resolver(monkeypatch, _response(content=content))
    pinned = await resolver.resolve(ImageReference.parse("quay.io/example/op:v1"))
    assert pinned.digest == f"sha256:{hashlib.sha256(content).hexdigest()}"


async def test_oras_resolve_pinned(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test references with a digest are not sent to the registry."""
    resolver, registry = _oras_resolver(monkeypatch, _response())
    reference = ImageReference.parse(f"quay.io/example/op@{DIGEST}")
    assert await resolver.resolve(reference) == reference
    assert not registry.requests


async def test_oras_resolve_not_found(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test an error response from the registry."""
    resolver, _ = _oras_resolver(
        monkeypatch, _response(status_code=404, content=b"manifest unknown")
    )
    with pytest.raises(ImageResolutionException, match="Registry returned 404"):
        await resolver.resolve(ImageReference.parse("quay.io/example/op:v1"))


async def test_oras_resolve_connection_error(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test a registry that can't be reached."""
    resolver, _ = _oras_resolver(
        monkeypatch, requests.ConnectionError("connection refused")
    )
    with pytest.raises(ImageResolutionException, match="connection refused"):
        await resolver.resolve(ImageReference.parse("quay.io/example/op:v1"))
