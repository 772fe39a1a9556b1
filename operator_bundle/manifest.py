"""Representation of the set of manifests that make up an operator bundle.

A `ManifestSet` is built fresh from the input manifests on every invocation and
partitions the raw kubernetes objects by the role they play in the bundle:
ClusterServiceVersion candidates, CustomResourceDefinitions, instances of those
CustomResourceDefinitions, any other objects, and an optional scorecard
configuration.

Objects are kept as plain dictionaries as they were read, so that they can be
written back out without losing fields this library does not know about.
"""

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os
import yaml

from .exceptions import BundleIOException, InputException

__all__ = [
    "ManifestSet",
    "load_documents",
    "dump_document",
    "dump_documents",
    "read_documents",
    "write_document",
    "object_file_name",
    "csv_file_name",
]

_LOGGER = logging.getLogger(__name__)


CSV_KIND = "ClusterServiceVersion"
CSV_API_VERSION = "operators.coreos.com/v1alpha1"
CRD_KIND = "CustomResourceDefinition"
DEPLOYMENT_KIND = "Deployment"
SERVICE_KIND = "Service"
SERVICE_ACCOUNT_KIND = "ServiceAccount"
ROLE_KIND = "Role"
CLUSTER_ROLE_KIND = "ClusterRole"
ROLE_BINDING_KIND = "RoleBinding"
CLUSTER_ROLE_BINDING_KIND = "ClusterRoleBinding"
VALIDATING_WEBHOOK_KIND = "ValidatingWebhookConfiguration"
MUTATING_WEBHOOK_KIND = "MutatingWebhookConfiguration"

# Match a prefix of apiVersion to ensure we have the right type of object.
SCORECARD_DOMAIN = "scorecard.operatorframework.io"
SCORECARD_KIND = "Configuration"

CSV_FILE_SUFFIX = ".clusterserviceversion.yaml"
MANIFEST_SUFFIXES = (".yaml", ".yml", ".json")


def _str_presenter(dumper: yaml.SafeDumper, data: str) -> Any:
    """Represent multi-line yaml strings as you'd expect.

    See https://github.com/yaml/pyyaml/issues/240
    """
    return dumper.represent_scalar(
        "tag:yaml.org,2002:str", data, style="|" if data.count("\n") > 0 else None
    )


class _Dumper(yaml.SafeDumper):
    """Dumper used for every document written to a bundle."""

    def ignore_aliases(self, data: Any) -> bool:
        return True


_Dumper.add_representer(str, _str_presenter)


def split_api_version(api_version: str) -> tuple[str, str]:
    """Return the group and version of an apiVersion, group is empty for core."""
    if "/" in api_version:
        group, version = api_version.split("/", 1)
        return group, version
    return "", api_version


def object_name(doc: dict[str, Any]) -> str:
    """Return the metadata.name of the object or raise if it is missing."""
    if not (metadata := doc.get("metadata")) or not (name := metadata.get("name")):
        raise InputException(
            f"Invalid {doc.get('kind')} object missing metadata.name: {doc}"
        )
    return str(name)


def crd_group_kind(crd: dict[str, Any]) -> tuple[str, str]:
    """Return the group and kind served by a CustomResourceDefinition."""
    spec = crd.get("spec") or {}
    names = spec.get("names") or {}
    if not (group := spec.get("group")) or not (kind := names.get("kind")):
        raise InputException(
            f"Invalid {CRD_KIND} missing spec.group or spec.names.kind: {crd}"
        )
    return group, kind


def is_scorecard_config(doc: dict[str, Any]) -> bool:
    """Check if the object is an embedded scorecard configuration."""
    return doc.get("kind") == SCORECARD_KIND and str(
        doc.get("apiVersion", "")
    ).startswith(SCORECARD_DOMAIN)


@dataclass
class ManifestSet:
    """Holds the manifests read from the selected input source."""

    cluster_service_versions: list[dict[str, Any]] = field(default_factory=list)
    """ClusterServiceVersion candidates used as a seed for synthesis."""

    custom_resource_definitions: list[dict[str, Any]] = field(default_factory=list)
    """CustomResourceDefinitions owned by the operator."""

    custom_resources: list[dict[str, Any]] = field(default_factory=list)
    """Example instances of the owned CustomResourceDefinitions."""

    objects: list[dict[str, Any]] = field(default_factory=list)
    """All other objects in the order they were read."""

    scorecard_config: dict[str, Any] | None = None
    """An embedded scorecard test configuration, if one was passed."""

    def add(self, doc: dict[str, Any]) -> None:
        """Classify a raw kubernetes object and add it to the set."""
        kind = doc["kind"]
        if kind == CSV_KIND:
            self.cluster_service_versions.append(doc)
        elif kind == CRD_KIND:
            self.custom_resource_definitions.append(doc)
        elif is_scorecard_config(doc):
            self.scorecard_config = doc
        else:
            self.objects.append(doc)

    def split_custom_resources(self) -> None:
        """Move instances of collected CustomResourceDefinitions out of objects.

        This runs once all documents are read since a custom resource may
        appear before the definition in the input.
        """
        owned = {crd_group_kind(crd) for crd in self.custom_resource_definitions}
        if not owned:
            return
        objects = []
        for doc in self.objects:
            group, _ = split_api_version(doc["apiVersion"])
            if (group, doc["kind"]) in owned:
                self.custom_resources.append(doc)
            else:
                objects.append(doc)
        self.objects = objects

    def kind(self, kind: str) -> list[dict[str, Any]]:
        """Return the objects of the specified kind in collection order."""
        return [doc for doc in self.objects if doc["kind"] == kind]

    @property
    def deployments(self) -> list[dict[str, Any]]:
        return self.kind(DEPLOYMENT_KIND)

    @property
    def services(self) -> list[dict[str, Any]]:
        return self.kind(SERVICE_KIND)

    @property
    def webhook_configurations(self) -> list[dict[str, Any]]:
        return [
            doc
            for doc in self.objects
            if doc["kind"] in (VALIDATING_WEBHOOK_KIND, MUTATING_WEBHOOK_KIND)
        ]


def load_documents(content: str, source: str) -> list[dict[str, Any]]:
    """Parse a multi-document YAML string into kubernetes objects.

    Documents that are empty or do not look like kubernetes objects are
    skipped. The source is used for error messages and logging only.
    """
    try:
        raw_docs = list(yaml.safe_load_all(content))
    except yaml.YAMLError as err:
        raise InputException(f"Unable to parse manifests in {source}: {err}") from err
    docs = []
    for doc in raw_docs:
        if doc is None:
            continue
        if not isinstance(doc, dict) or not doc.get("apiVersion") or not doc.get(
            "kind"
        ):
            _LOGGER.debug("No TypeMeta in document from %s, skipping", source)
            continue
        docs.append(doc)
    return docs


def dump_document(doc: dict[str, Any]) -> str:
    """Serialize a single object as YAML."""
    return yaml.dump(doc, Dumper=_Dumper, sort_keys=False)


def dump_documents(docs: list[dict[str, Any]]) -> str:
    """Serialize objects as a multi-document YAML stream."""
    return yaml.dump_all(docs, Dumper=_Dumper, sort_keys=False, explicit_start=True)


async def read_documents(path: Path) -> list[dict[str, Any]]:
    """Read all kubernetes objects from a file."""
    try:
        async with aiofiles.open(str(path)) as manifest_file:
            content = await manifest_file.read()
    except OSError as err:
        raise BundleIOException(f"Unable to read {path}: {err}") from err
    return load_documents(content, str(path))


async def write_text(path: Path, content: str) -> None:
    """Write the content to a file, creating parent directories as needed."""
    try:
        await aiofiles.os.makedirs(path.parent, exist_ok=True)
        async with aiofiles.open(str(path), mode="w") as out_file:
            await out_file.write(content)
    except OSError as err:
        raise BundleIOException(f"Unable to write {path}: {err}") from err


async def write_document(path: Path, doc: dict[str, Any]) -> None:
    """Write a single object to a file."""
    _LOGGER.debug("Writing %s", path)
    await write_text(path, dump_document(doc))


def object_file_name(doc: dict[str, Any]) -> str:
    """Return a deterministic file name for an object based on kind and name.

    CustomResourceDefinitions are named `<group>_<plural>.yaml`, everything else
    is named `<name>_<group>_<version>_<kind>.yaml`.
    """
    kind = doc["kind"]
    if kind == CRD_KIND:
        spec = doc.get("spec") or {}
        plural = (spec.get("names") or {}).get("plural")
        if not (group := spec.get("group")) or not plural:
            raise InputException(
                f"Invalid {CRD_KIND} missing spec.group or spec.names.plural: {doc}"
            )
        return f"{group}_{plural}.yaml"
    name = object_name(doc)
    group, version = split_api_version(doc["apiVersion"])
    parts = [name, group, version, kind.lower()]
    return "_".join(part for part in parts if part) + ".yaml"


def csv_file_name(package_name: str) -> str:
    """Return the file name of the ClusterServiceVersion for a package."""
    return f"{package_name}{CSV_FILE_SUFFIX}"
