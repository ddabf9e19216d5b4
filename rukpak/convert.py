"""Conversion of registry+v1 operator bundles into plain manifests.

A registry+v1 bundle holds a ClusterServiceVersion, CRDs and other
objects. The conversion expands the CSV's install strategy into a
namespace, service accounts, RBAC objects and deployments. All objects
are handled in their plain JSON form (nested dicts and lists).
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional, Union

import yaml

from rukpak.api import AnnotationsFile

INSTALL_MODE_OWN_NAMESPACE = "OwnNamespace"
INSTALL_MODE_SINGLE_NAMESPACE = "SingleNamespace"
INSTALL_MODE_MULTI_NAMESPACE = "MultiNamespace"
INSTALL_MODE_ALL_NAMESPACES = "AllNamespaces"

SUGGESTED_NAMESPACE_ANNOTATION = "operatorframework.io/suggested-namespace"
TARGET_NAMESPACES_ANNOTATION = "olm.targetNamespaces"

MANIFESTS_DIR = "manifests"
MANIFEST_PATH = "manifests/manifest.yaml"
MAX_NAME_LENGTH = 63

_RBAC_GROUP = "rbac.authorization.k8s.io"
_RBAC_API_VERSION = f"{_RBAC_GROUP}/v1"
_SAFE_ALPHANUMS = "bcdfghjklmnpqrstvwxz2456789"
_FNV32_OFFSET = 0x811C9DC5
_FNV32_PRIME = 0x01000193


class ConversionError(Exception):
    """A bundle cannot be converted to plain manifests."""


@dataclass
class RegistryV1:
    """The parsed contents of a registry+v1 bundle."""

    package_name: str = ""
    csv: dict = field(default_factory=dict)
    crds: list[dict] = field(default_factory=list)
    others: list[dict] = field(default_factory=list)


@dataclass
class Plain:
    """The objects of a plain bundle, in the order they are written out."""

    objects: list[dict] = field(default_factory=list)


def _kind(obj: dict) -> str:
    return obj.get("kind", "") if isinstance(obj, dict) else ""


def _read_manifest(path: Path) -> list[dict]:
    try:
        documents = list(yaml.safe_load_all(path.read_bytes()))
    except yaml.YAMLError as err:
        raise ConversionError(f"read {json.dumps(path.name)}: {err}") from err
    objects = []
    for doc in documents:
        if doc is None:
            continue
        if not isinstance(doc, dict):
            raise ConversionError(f"read {json.dumps(path.name)}: expected an object, got {type(doc).__name__}")
        objects.append(doc)
    return objects


def registry_v1_to_plain(root: Union[str, Path]) -> dict[str, bytes]:
    """Convert the registry+v1 bundle at ``root`` into a plain bundle.

    Returns the plain bundle's files as a mapping of relative path to
    content; it holds a single ``manifests/manifest.yaml``.
    """
    root = Path(root)
    annotations_data = yaml.safe_load((root / "metadata" / "annotations.yaml").read_bytes())
    try:
        annotations_file = AnnotationsFile.from_dict(annotations_data)
    except ValueError as err:
        raise ConversionError(str(err)) from err
    registry = RegistryV1(package_name=annotations_file.annotations.package_name)

    manifests = root / MANIFESTS_DIR
    objects: list[dict] = []
    for entry in sorted(manifests.iterdir(), key=lambda p: p.name):
        if entry.is_dir():
            found = f"{MANIFESTS_DIR}/{entry.name}"
            raise ConversionError(
                f"subdirectories are not allowed within the {json.dumps(MANIFESTS_DIR)} directory "
                f"of the bundle image filesystem: found {json.dumps(found)}"
            )
        objects.extend(_read_manifest(entry))

    for obj in objects:
        kind = _kind(obj)
        if kind == "ClusterServiceVersion":
            registry.csv = obj
        elif kind == "CustomResourceDefinition":
            registry.crds.append(obj)
        else:
            registry.others.append(obj)

    plain = simple(registry)
    manifest = "".join(
        f"---\n{yaml.safe_dump(obj, sort_keys=True, default_flow_style=False)}\n" for obj in plain.objects
    )
    return {MANIFEST_PATH: manifest.encode("utf-8")}


def _go_list(items: Iterable[str]) -> str:
    return "[" + " ".join(items) + "]"


def validate_target_namespaces(
    supported_install_modes: Iterable[str],
    install_namespace: str,
    target_namespaces: Optional[list[str]],
) -> None:
    """Raise ConversionError unless the install modes allow ``target_namespaces``."""
    supported = set(supported_install_modes)
    targets = list(target_namespaces or [])
    unique = set(targets)
    if not unique:
        if INSTALL_MODE_ALL_NAMESPACES in supported:
            return
    elif len(unique) == 1:
        if "" in unique and INSTALL_MODE_ALL_NAMESPACES in supported:
            return
        if INSTALL_MODE_SINGLE_NAMESPACE in supported:
            return
        if INSTALL_MODE_OWN_NAMESPACE in supported and targets[0] == install_namespace:
            return
    elif INSTALL_MODE_MULTI_NAMESPACE in supported:
        return
    raise ConversionError(
        f"supported install modes {_go_list(sorted(supported))} "
        f"do not support target namespaces {_go_list(targets)}"
    )


def simple(registry: RegistryV1) -> Plain:
    """Convert with the default install namespace and target namespaces."""
    return convert(registry, "", None)


def _sa_name(name: Optional[str]) -> str:
    return name or "default"


def _fnv1a_32(data: bytes) -> int:
    value = _FNV32_OFFSET
    for byte in data:
        value ^= byte
        value = (value * _FNV32_PRIME) & 0xFFFFFFFF
    return value


def _safe_encode(text: str) -> str:
    return "".join(_SAFE_ALPHANUMS[byte % len(_SAFE_ALPHANUMS)] for byte in text.encode("utf-8"))


def generate_name(base: str, obj: Any) -> str:
    """Return ``base`` suffixed with a stable hash of ``obj``, at most 63 characters."""
    digest = _fnv1a_32(json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8"))
    hash_str = _safe_encode(str(digest))
    if len(base) + len(hash_str) > MAX_NAME_LENGTH:
        base = base[: MAX_NAME_LENGTH - len(hash_str) - 1]
    return f"{base}-{hash_str}"


def _service_account(namespace: str, name: str) -> dict:
    return {"apiVersion": "v1", "kind": "ServiceAccount", "metadata": {"namespace": namespace, "name": name}}


def _role(namespace: str, name: str, rules: list) -> dict:
    return {
        "apiVersion": _RBAC_API_VERSION,
        "kind": "Role",
        "metadata": {"namespace": namespace, "name": name},
        "rules": copy.deepcopy(rules),
    }


def _cluster_role(name: str, rules: list) -> dict:
    return {
        "apiVersion": _RBAC_API_VERSION,
        "kind": "ClusterRole",
        "metadata": {"name": name},
        "rules": copy.deepcopy(rules),
    }


def _subjects(sa_namespace: str, sa_names: Iterable[str]) -> list[dict]:
    return [{"kind": "ServiceAccount", "namespace": sa_namespace, "name": name} for name in sa_names]


def _role_binding(namespace: str, name: str, role_name: str, sa_namespace: str, *sa_names: str) -> dict:
    return {
        "apiVersion": _RBAC_API_VERSION,
        "kind": "RoleBinding",
        "metadata": {"namespace": namespace, "name": name},
        "subjects": _subjects(sa_namespace, sa_names),
        "roleRef": {"apiGroup": _RBAC_GROUP, "kind": "Role", "name": role_name},
    }


def _cluster_role_binding(name: str, role_name: str, sa_namespace: str, *sa_names: str) -> dict:
    return {
        "apiVersion": _RBAC_API_VERSION,
        "kind": "ClusterRoleBinding",
        "metadata": {"name": name},
        "subjects": _subjects(sa_namespace, sa_names),
        "roleRef": {"apiGroup": _RBAC_GROUP, "kind": "ClusterRole", "name": role_name},
    }


def convert(
    registry: RegistryV1,
    install_namespace: str,
    target_namespaces: Optional[list[str]],
) -> Plain:
    """Expand a registry+v1 bundle into the plain objects that install it."""
    csv = registry.csv or {}
    csv_meta = csv.get("metadata") or {}
    csv_name = csv_meta.get("name", "")
    csv_annotations = csv_meta.get("annotations") or {}
    csv_spec = csv.get("spec") or {}

    if not install_namespace:
        install_namespace = csv_annotations.get(SUGGESTED_NAMESPACE_ANNOTATION, "")
    if not install_namespace:
        install_namespace = f"{registry.package_name}-system"

    supported = {im.get("type", "") for im in csv_spec.get("installModes") or [] if im.get("supported")}
    if INSTALL_MODE_ALL_NAMESPACES not in supported:
        raise ConversionError("AllNamespace install mode must be enabled")
    if target_namespaces is None:
        target_namespaces = [""]
    target_namespaces = list(target_namespaces)

    validate_target_namespaces(supported, install_namespace, target_namespaces)

    if ((csv_spec.get("apiservicedefinitions") or {}).get("owned")):
        raise ConversionError("apiServiceDefintions are not supported")
    if csv_spec.get("webhookdefinitions"):
        raise ConversionError("webhookDefinitions are not supported")

    strategy = (csv_spec.get("install") or {}).get("spec") or {}

    deployments: list[dict] = []
    service_accounts: dict[str, dict] = {}
    for dep_spec in strategy.get("deployments") or []:
        spec = copy.deepcopy(dep_spec.get("spec") or {})
        template_annotations = ((spec.get("template") or {}).get("metadata") or {}).get("annotations") or {}
        annotations = {**csv_annotations, **template_annotations}
        annotations[TARGET_NAMESPACES_ANNOTATION] = ",".join(target_namespaces)
        metadata: dict = {"namespace": install_namespace, "name": dep_spec.get("name", "")}
        if dep_spec.get("label"):
            metadata["labels"] = dict(dep_spec["label"])
        metadata["annotations"] = annotations
        deployments.append({"apiVersion": "apps/v1", "kind": "Deployment", "metadata": metadata, "spec": spec})
        sa_name = _sa_name(((spec.get("template") or {}).get("spec") or {}).get("serviceAccountName"))
        service_accounts[sa_name] = _service_account(install_namespace, sa_name)

    permissions = list(strategy.get("permissions") or [])
    cluster_permissions = list(strategy.get("clusterPermissions") or [])

    for permission in permissions + cluster_permissions:
        sa_name = _sa_name(permission.get("serviceAccountName"))
        service_accounts.setdefault(sa_name, _service_account(install_namespace, sa_name))

    # In AllNamespaces mode namespaced permissions are granted cluster-wide.
    if len(target_namespaces) == 1 and target_namespaces[0] == "":
        cluster_permissions = cluster_permissions + permissions
        permissions = []

    roles: list[dict] = []
    role_bindings: list[dict] = []
    for permission in permissions:
        sa_name = _sa_name(permission.get("serviceAccountName"))
        name = generate_name(f"{csv_name}-{sa_name}", [csv_name, permission])
        roles.append(_role(install_namespace, name, permission.get("rules") or []))
        role_bindings.append(_role_binding(install_namespace, name, name, install_namespace, sa_name))

    cluster_roles: list[dict] = []
    cluster_role_bindings: list[dict] = []
    for permission in cluster_permissions:
        sa_name = _sa_name(permission.get("serviceAccountName"))
        name = generate_name(f"{csv_name}-{sa_name}", [csv_name, permission])
        cluster_roles.append(_cluster_role(name, permission.get("rules") or []))
        cluster_role_bindings.append(_cluster_role_binding(name, name, install_namespace, sa_name))

    namespace = {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": install_namespace}}
    objects: list[dict] = [namespace]
    objects.extend(sa for name, sa in service_accounts.items() if name != "default")
    objects.extend(roles)
    objects.extend(role_bindings)
    objects.extend(cluster_roles)
    objects.extend(cluster_role_bindings)
    objects.extend(copy.deepcopy(registry.crds))
    objects.extend(copy.deepcopy(registry.others))
    objects.extend(deployments)
    return Plain(objects=objects)