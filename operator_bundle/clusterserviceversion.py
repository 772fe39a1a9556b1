"""Library for synthesizing the ClusterServiceVersion of a bundle.

The ClusterServiceVersion (CSV) is built from a seed, either a CSV passed in
with the manifests or a hand-authored base, and the collected manifests. Fields
derived from the manifests (owned CRDs, install strategy deployments, RBAC
permissions, webhook definitions) always replace the values in the seed. Human
authored metadata in the seed (description, display name, icon, maintainers,
keywords, links, maturity, provider, install modes) is kept as is.

Example usage:

```python
from operator_bundle import clusterserviceversion

generator = clusterserviceversion.Generator(
    operator_name="memcached-operator",
    manifests=manifests,
    version="0.0.1",
)
csv = generator.synthesize()
print(csv["spec"]["customresourcedefinitions"]["owned"])
```

Since the CSV is regenerated on every run, it carries a `createdAt` timestamp
annotation that changes every time. When the caller opts in, a CSV that differs
from the one already on disk only by this timestamp is not rewritten at all, so
that a bundle checked into version control does not churn.
"""

from collections.abc import Callable
import copy
from dataclasses import dataclass, field
import datetime
import json
import logging
import re
from typing import Any

from .exceptions import MergeException
from .manifest import (
    CLUSTER_ROLE_BINDING_KIND,
    CLUSTER_ROLE_KIND,
    CSV_API_VERSION,
    CSV_KIND,
    MUTATING_WEBHOOK_KIND,
    ROLE_BINDING_KIND,
    ROLE_KIND,
    ManifestSet,
    crd_group_kind,
    csv_file_name,
    object_name,
)
from .related_images import RelatedImage
from .writer import DirectoryWriter, ManifestWriter

__all__ = [
    "Generator",
    "new_cluster_service_version",
    "only_created_at_changed",
]

_LOGGER = logging.getLogger(__name__)

CREATED_AT_ANNOTATION = "createdAt"
CREATED_AT_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
ALM_EXAMPLES_ANNOTATION = "alm-examples"
CAPABILITIES_ANNOTATION = "capabilities"
DEFAULT_VERSION = "0.0.0"
DEFAULT_SERVICE_ACCOUNT = "default"
DEFAULT_WEBHOOK_PORT = 443
INSTALL_STRATEGY = "deployment"

# Fields of an owned CRD description that are written by hand
OWNED_DESCRIPTION_FIELDS = (
    "displayName",
    "description",
    "resources",
    "specDescriptors",
    "statusDescriptors",
    "actionDescriptors",
)

# Fields copied from a webhook in a webhook configuration to its definition
WEBHOOK_FIELDS = (
    "admissionReviewVersions",
    "sideEffects",
    "failurePolicy",
    "matchPolicy",
    "objectSelector",
    "rules",
    "timeoutSeconds",
)

_CAMEL_CASE_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def new_cluster_service_version(operator_name: str) -> dict[str, Any]:
    """Return an empty CSV used when there is no seed."""
    return {
        "apiVersion": CSV_API_VERSION,
        "kind": CSV_KIND,
        "metadata": {
            "annotations": {
                ALM_EXAMPLES_ANNOTATION: "[]",
                CAPABILITIES_ANNOTATION: "Basic Install",
            },
            "name": f"{operator_name}.v{DEFAULT_VERSION}",
            "namespace": "placeholder",
        },
        "spec": {
            "apiservicedefinitions": {},
            "customresourcedefinitions": {},
            "description": "",
            "displayName": "",
            "install": {"spec": {}, "strategy": INSTALL_STRATEGY},
            "installModes": [
                {"supported": True, "type": "OwnNamespace"},
                {"supported": True, "type": "SingleNamespace"},
                {"supported": False, "type": "MultiNamespace"},
                {"supported": True, "type": "AllNamespaces"},
            ],
            "version": DEFAULT_VERSION,
        },
    }


def display_name(kind: str) -> str:
    """Return a human readable name for a kind e.g. `MemcachedBackup` -> `Memcached Backup`."""
    return _CAMEL_CASE_RE.sub(" ", kind)


def _crd_versions(crd: dict[str, Any]) -> list[str]:
    spec = crd.get("spec") or {}
    versions = [v["name"] for v in spec.get("versions") or [] if v.get("name")]
    if not versions and (version := spec.get("version")):
        versions = [version]
    return versions


def _owned_crds(
    crds: list[dict[str, Any]], existing: list[dict[str, Any]]
) -> list[dict[str, Any]]:
    """Return the owned CRD descriptions, keeping descriptions written by hand."""
    previous = {(desc.get("name"), desc.get("version")): desc for desc in existing}
    owned = []
    for crd in crds:
        name = object_name(crd)
        _, kind = crd_group_kind(crd)
        for version in _crd_versions(crd):
            desc: dict[str, Any] = {"name": name, "version": version, "kind": kind}
            prior = previous.get((name, version)) or {}
            for key in OWNED_DESCRIPTION_FIELDS:
                if key in prior:
                    desc[key] = copy.deepcopy(prior[key])
            desc.setdefault("displayName", display_name(kind))
            owned.append(desc)
    owned.sort(key=lambda desc: (desc["name"], desc["version"]))
    return owned


def _pod_spec(deployment: dict[str, Any]) -> dict[str, Any]:
    return (
        ((deployment.get("spec") or {}).get("template") or {}).get("spec")
    ) or {}


def _deployment_service_accounts(deployments: list[dict[str, Any]]) -> list[str]:
    accounts: list[str] = []
    for deployment in deployments:
        pod_spec = _pod_spec(deployment)
        account = (
            pod_spec.get("serviceAccountName")
            or pod_spec.get("serviceAccount")
            or DEFAULT_SERVICE_ACCOUNT
        )
        if account not in accounts:
            accounts.append(account)
    return accounts


def _bound_rules(
    bindings: list[dict[str, Any]],
    roles: dict[tuple[str, str], dict[str, Any]],
    service_accounts: list[str],
) -> list[dict[str, Any]]:
    """Return permissions for the service accounts subject to the bindings."""
    rules_by_account: dict[str, list[Any]] = {}
    for binding in bindings:
        role_ref = binding.get("roleRef") or {}
        key = (role_ref.get("kind", ""), role_ref.get("name", ""))
        if (role := roles.get(key)) is None:
            _LOGGER.debug(
                "%s %s refers to unknown %s %s",
                binding["kind"],
                object_name(binding),
                *key,
            )
            continue
        for subject in binding.get("subjects") or []:
            if subject.get("kind") != "ServiceAccount":
                continue
            if (account := subject.get("name")) not in service_accounts:
                continue
            rules_by_account.setdefault(account, []).extend(
                copy.deepcopy(role.get("rules") or [])
            )
    return [
        {"serviceAccountName": account, "rules": rules}
        for account, rules in rules_by_account.items()
    ]


def _webhook_deployment(
    service: dict[str, Any], deployments: list[dict[str, Any]]
) -> str | None:
    """Return the name of the deployment selected by the service."""
    if not (selector := (service.get("spec") or {}).get("selector")):
        return None
    for deployment in deployments:
        labels = (
            ((deployment.get("spec") or {}).get("template") or {}).get("metadata")
            or {}
        ).get("labels") or {}
        if all(labels.get(k) == v for k, v in selector.items()):
            return object_name(deployment)
    return None


def _webhook_definitions(manifests: ManifestSet) -> list[dict[str, Any]]:
    services = {object_name(svc): svc for svc in manifests.services}
    deployments = manifests.deployments
    definitions = []
    for config in manifests.webhook_configurations:
        mutating = config["kind"] == MUTATING_WEBHOOK_KIND
        for webhook in config.get("webhooks") or []:
            definition: dict[str, Any] = {
                "type": (
                    "MutatingAdmissionWebhook"
                    if mutating
                    else "ValidatingAdmissionWebhook"
                ),
                "generateName": webhook.get("name"),
            }
            for key in WEBHOOK_FIELDS + (("reinvocationPolicy",) if mutating else ()):
                if key in webhook:
                    definition[key] = copy.deepcopy(webhook[key])
            service_ref = (webhook.get("clientConfig") or {}).get("service") or {}
            if path := service_ref.get("path"):
                definition["webhookPath"] = path
            port = service_ref.get("port", DEFAULT_WEBHOOK_PORT)
            definition["containerPort"] = port
            if (service := services.get(service_ref.get("name", ""))) is None:
                _LOGGER.warning(
                    "No Service %s found for webhook %s",
                    service_ref.get("name"),
                    webhook.get("name"),
                )
            else:
                for service_port in (service.get("spec") or {}).get("ports") or []:
                    if service_port.get("port") == port and "targetPort" in service_port:
                        definition["targetPort"] = service_port["targetPort"]
                if deployment_name := _webhook_deployment(service, deployments):
                    definition["deploymentName"] = deployment_name
            definitions.append(definition)
    return definitions


def _without_created_at(csv: dict[str, Any]) -> dict[str, Any]:
    csv = copy.deepcopy(csv)
    annotations = (csv.get("metadata") or {}).get("annotations") or {}
    annotations.pop(CREATED_AT_ANNOTATION, None)
    return csv


def only_created_at_changed(existing: dict[str, Any], new: dict[str, Any]) -> bool:
    """Return true if the CSVs are the same except for the createdAt timestamp."""
    return _without_created_at(existing) == _without_created_at(new)


@dataclass
class Generator:
    """Generates a ClusterServiceVersion from the collected manifests."""

    operator_name: str
    """The name of the operator package."""

    manifests: ManifestSet
    """The collected manifests, including any seed CSV."""

    version: str | None = None
    """The version of the bundle, or None to keep the version of the seed."""

    annotations: dict[str, str] = field(default_factory=dict)
    """Annotations added to the CSV."""

    extra_service_accounts: list[str] = field(default_factory=list)
    """Service accounts to declare RBAC for besides those of the deployments."""

    related_images: list[RelatedImage] = field(default_factory=list)
    """Images the operator depends on."""

    clock: Callable[[], datetime.datetime] = _utcnow
    """Returns the time used for the createdAt annotation."""

    def seed(self) -> dict[str, Any]:
        """Return a copy of the CSV to start synthesis from."""
        candidates = self.manifests.cluster_service_versions
        if len(candidates) > 1:
            names = ", ".join(
                str((csv.get("metadata") or {}).get("name")) for csv in candidates
            )
            raise MergeException(
                f"Expected at most one {CSV_KIND} but found {len(candidates)}: {names}"
            )
        if not candidates:
            return new_cluster_service_version(self.operator_name)
        return copy.deepcopy(candidates[0])

    def synthesize(self) -> dict[str, Any]:
        """Return the CSV with all derived fields applied to the seed."""
        csv = self.seed()
        csv.setdefault("apiVersion", CSV_API_VERSION)
        metadata = csv.setdefault("metadata", {})
        if not isinstance(metadata, dict):
            raise MergeException(f"Invalid {CSV_KIND} metadata: {metadata}")
        spec = csv.get("spec") or {}
        csv["spec"] = spec

        version = self.version or spec.get("version") or DEFAULT_VERSION
        if self.version or not metadata.get("name"):
            metadata["name"] = f"{self.operator_name}.v{version}"
        spec["version"] = version

        annotations = metadata.get("annotations") or {}
        metadata["annotations"] = annotations
        annotations.update(self.annotations)
        if self.manifests.custom_resources:
            annotations[ALM_EXAMPLES_ANNOTATION] = json.dumps(
                self.manifests.custom_resources, indent=2
            )
        annotations[CREATED_AT_ANNOTATION] = self.clock().strftime(CREATED_AT_FORMAT)

        crd_descriptions = spec.get("customresourcedefinitions") or {}
        spec["customresourcedefinitions"] = crd_descriptions
        if owned := _owned_crds(
            self.manifests.custom_resource_definitions,
            crd_descriptions.get("owned") or [],
        ):
            crd_descriptions["owned"] = owned
        else:
            crd_descriptions.pop("owned", None)

        deployments = self.manifests.deployments
        service_accounts = _deployment_service_accounts(deployments)
        for account in self.extra_service_accounts:
            if account not in service_accounts:
                service_accounts.append(account)
        install_spec: dict[str, Any] = {
            "deployments": [
                {
                    "name": object_name(deployment),
                    **(
                        {"label": labels}
                        if (labels := deployment["metadata"].get("labels"))
                        else {}
                    ),
                    "spec": copy.deepcopy(deployment.get("spec") or {}),
                }
                for deployment in deployments
            ]
        }
        roles = {
            (doc["kind"], object_name(doc)): doc
            for doc in self.manifests.objects
            if doc["kind"] in (ROLE_KIND, CLUSTER_ROLE_KIND)
        }
        if permissions := _bound_rules(
            self.manifests.kind(ROLE_BINDING_KIND), roles, service_accounts
        ):
            install_spec["permissions"] = permissions
        cluster_roles = {
            key: doc for key, doc in roles.items() if key[0] == CLUSTER_ROLE_KIND
        }
        if cluster_permissions := _bound_rules(
            self.manifests.kind(CLUSTER_ROLE_BINDING_KIND),
            cluster_roles,
            service_accounts,
        ):
            install_spec["clusterPermissions"] = cluster_permissions
        spec["install"] = {"spec": install_spec, "strategy": INSTALL_STRATEGY}

        if webhooks := _webhook_definitions(self.manifests):
            spec["webhookdefinitions"] = webhooks
        else:
            spec.pop("webhookdefinitions", None)

        if self.related_images:
            spec["relatedImages"] = [image.as_dict() for image in self.related_images]

        return csv

    async def generate(
        self,
        writer: ManifestWriter,
        *,
        ignore_if_only_created_at_changed: bool = False,
    ) -> dict[str, Any]:
        """Synthesize the CSV and write it, returning the CSV in the bundle.

        When `ignore_if_only_created_at_changed` is set and the writer is backed
        by an existing bundle directory, a CSV that only differs from the one
        on disk by its createdAt timestamp is kept byte for byte.
        """
        csv = self.synthesize()
        file_name = csv_file_name(self.operator_name)
        if ignore_if_only_created_at_changed and isinstance(writer, DirectoryWriter):
            existing = await writer.read(file_name)
            if existing is not None and only_created_at_changed(existing, csv):
                _LOGGER.info(
                    "%s only changed createdAt, keeping existing file", file_name
                )
                writer.keep(file_name)
                return existing
        await writer.write(file_name, csv)
        return csv
