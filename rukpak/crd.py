"""Safety checks for upgrading a CustomResourceDefinition.

CRDs and custom resources are handled in their plain JSON form (nested
dicts and lists). An upgrade is refused when it would drop a version that
objects are stored at, or when existing objects would not validate
against the new schema.
"""

from __future__ import annotations

import copy
import json
from typing import Any, Iterable, Optional

import jsonschema

_SCHEMA_MAPS = frozenset({"properties", "patternProperties", "definitions", "dependencies"})
_SCHEMA_LISTS = frozenset({"allOf", "anyOf", "oneOf"})
_SCHEMA_SINGLE = frozenset({"not", "additionalProperties", "additionalItems", "items"})


class NotFoundError(LookupError):
    """The requested object does not exist on the cluster."""


class CRDValidationError(Exception):
    """A CRD update is unsafe or could not be checked."""


class ClusterClient:
    """Read access to CRDs and custom resources, held in memory.

    ``list_resources`` returns every stored object of the matching group and
    kind, presented at the requested version, as an API server does when no
    conversion is involved.
    """

    def __init__(self, crds: Iterable[dict] = (), resources: Iterable[dict] = ()) -> None:
        self._crds = {_name(crd): copy.deepcopy(crd) for crd in crds}
        self._resources = [copy.deepcopy(obj) for obj in resources]

    def get_crd(self, name: str) -> dict:
        """Return the CRD called ``name`` or raise NotFoundError."""
        try:
            return copy.deepcopy(self._crds[name])
        except KeyError:
            raise NotFoundError(f'customresourcedefinitions.apiextensions.k8s.io "{name}" not found') from None

    def list_resources(self, group: str, version: str, kind: str) -> list[dict]:
        """Return the objects of ``group`` and ``kind`` (or its list kind) at ``version``."""
        item_kind = kind[: -len("List")] if kind.endswith("List") else kind
        api_version = f"{group}/{version}" if group else version
        found = []
        for obj in self._resources:
            obj_group, _, _ = obj.get("apiVersion", "").rpartition("/")
            if obj_group == group and obj.get("kind") == item_kind:
                item = copy.deepcopy(obj)
                item["apiVersion"] = api_version
                found.append(item)
        return found


def _quote(text: str) -> str:
    return json.dumps(text)


def _go_list(names: Iterable[str]) -> str:
    return "[" + " ".join(sorted(names)) + "]"


def _name(crd: dict) -> str:
    return (crd.get("metadata") or {}).get("name", "")


def _spec(crd: dict) -> dict:
    return crd.get("spec") or {}


def _versions(crd: dict) -> dict[str, dict]:
    return {v["name"]: v for v in _spec(crd).get("versions") or []}


def _stored_versions(crd: dict) -> set[str]:
    return set((crd.get("status") or {}).get("storedVersions") or [])


def _list_kind(crd: dict) -> str:
    names = _spec(crd).get("names") or {}
    return names.get("listKind") or f"{names.get('kind', '')}List"


def _gvk_string(group: str, version: str, kind: str) -> str:
    return f"{group}/{version}, Kind={kind}"


def validate(client: ClusterClient, new_crd: dict) -> Optional[dict]:
    """Check that replacing the cluster's copy of ``new_crd`` is safe.

    Returns the CRD found on the cluster, or None when there is none yet (a
    new CRD is always valid). Raises CRDValidationError when unsafe.
    """
    name = _name(new_crd)
    try:
        old_crd = client.get_crd(name)
    except NotFoundError:
        return None

    try:
        validate_crd_compatibility(client, old_crd, new_crd)
    except CRDValidationError as err:
        raise CRDValidationError(
            f"error validating existing CRs against new CRD's schema for {_quote(name)}: {err}"
        ) from err

    try:
        safe_storage_version_upgrade(old_crd, new_crd)
    except CRDValidationError as err:
        raise CRDValidationError(f"risk of data loss updating {_quote(name)}: {err}") from err

    return old_crd


def validate_crd_compatibility(client: ClusterClient, old_crd: dict, new_crd: dict) -> None:
    """Check existing objects against the versions the new CRD changes or adds.

    Removing a stored version is refused; a changed schema of a served
    version must accept every existing object; an added version must accept
    them too unless a conversion webhook handles the change.
    """
    old_versions = _versions(old_crd)
    new_versions = _versions(new_crd)

    removed = old_versions.keys() - new_versions.keys()
    invalid_removed = _stored_versions(old_crd) & removed
    if invalid_removed:
        raise CRDValidationError(f"cannot remove stored versions {_go_list(invalid_removed)}")

    group = _spec(old_crd).get("group", "")
    list_kind = _list_kind(old_crd)

    similar = sorted(old_versions.keys() & new_versions.keys())
    changed = [v for v in similar if old_versions[v].get("schema") != new_versions[v].get("schema")]
    for name in changed:
        if old_versions[name].get("served"):
            validate_existing_crs(client, group, name, list_kind, new_versions[name])

    added = sorted(new_versions.keys() - old_versions.keys())
    conversion = _spec(new_crd).get("conversion")
    if added and (conversion is None or conversion.get("strategy", "None") == "None"):
        for added_name in added:
            for name in similar:
                old_version = old_versions[name]
                if old_version.get("served"):
                    validate_existing_crs(client, group, old_version["name"], list_kind, new_versions[added_name])


def _to_json_schema(node: Any) -> Any:
    """Turn an OpenAPI v3 structural schema into a plain JSON schema."""
    if not isinstance(node, dict):
        return node
    out: dict = {}
    for key, value in node.items():
        if key.startswith("x-kubernetes-") or key == "nullable":
            continue
        if key in _SCHEMA_MAPS and isinstance(value, dict):
            out[key] = {name: _to_json_schema(sub) for name, sub in value.items()}
        elif key in _SCHEMA_LISTS and isinstance(value, list):
            out[key] = [_to_json_schema(sub) for sub in value]
        elif key in _SCHEMA_SINGLE:
            out[key] = [_to_json_schema(sub) for sub in value] if isinstance(value, list) else _to_json_schema(value)
        else:
            out[key] = value
    if node.get("nullable") and isinstance(out.get("type"), str):
        out["type"] = [out["type"], "null"]
    return out


def _describe(error: jsonschema.ValidationError) -> str:
    path = ".".join(str(part) for part in error.absolute_path) or "<root>"
    return f"{path}: {error.message}"


def validate_existing_crs(
    client: ClusterClient, group: str, version: str, kind: str, new_version: dict
) -> None:
    """Validate every object listed at ``version`` against ``new_version``'s schema."""
    try:
        items = client.list_resources(group, version, kind)
    except Exception as err:
        raise CRDValidationError(f"error listing objects for {_gvk_string(group, version, kind)}: {err}") from err
    if not items:
        return

    version_name = new_version.get("name", "")
    raw_schema = (new_version.get("schema") or {}).get("openAPIV3Schema") or {}
    schema = _to_json_schema(raw_schema)
    try:
        jsonschema.Draft4Validator.check_schema(schema)
    except jsonschema.SchemaError as err:
        raise CRDValidationError(
            f"error creating validator for the schema of version {_quote(version_name)}: {err.message}"
        ) from err
    validator = jsonschema.Draft4Validator(schema)

    for cr in items:
        errors = sorted(validator.iter_errors(cr), key=lambda e: [str(p) for p in e.absolute_path])
        if errors:
            meta = cr.get("metadata") or {}
            details = [_describe(e) for e in errors]
            summary = details[0] if len(details) == 1 else "[" + ", ".join(details) + "]"
            raise CRDValidationError(
                f"existing custom object {meta.get('namespace', '')}/{meta.get('name', '')} "
                f"failed validation for new schema version {version_name}: {summary}"
            )


def safe_storage_version_upgrade(existing_crd: dict, new_crd: dict) -> bool:
    """Check that every stored version of ``existing_crd`` remains in ``new_crd``.

    Returns True when safe; raises CRDValidationError otherwise.
    """
    new_spec_versions = set(_versions(new_crd))
    if not new_spec_versions:
        raise CRDValidationError("could not find any versions in the new CRD")
    for name in sorted(_stored_versions(existing_crd)):
        if name not in new_spec_versions:
            raise CRDValidationError(
                f"new CRD removes version {name} that is listed as a stored version on the existing CRD"
            )
    return True