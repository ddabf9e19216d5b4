"""Event filtering for resources that a bundle deployment owns.

Objects are handled in their plain JSON form (nested dicts). Each method
answers whether an event on a dependent object should trigger a reconcile.
"""

from __future__ import annotations

import copy
import logging
from typing import Any

_log = logging.getLogger("rukpak.predicate")


def _describe(obj: Any) -> dict:
    if not isinstance(obj, dict):
        return {}
    metadata = obj.get("metadata") or {}
    return {
        "name": metadata.get("name", ""),
        "namespace": metadata.get("namespace", ""),
        "apiVersion": obj.get("apiVersion", ""),
        "kind": obj.get("kind", ""),
    }


def _without_volatile_fields(obj: dict) -> dict:
    """Copy ``obj`` without its status and resource version."""
    stripped = copy.deepcopy(obj)
    stripped.pop("status", None)
    metadata = stripped.get("metadata")
    if isinstance(metadata, dict):
        metadata.pop("resourceVersion", None)
    return stripped


class DependentPredicate:
    """Decides which events on dependent resources cause a reconcile."""

    def create(self, obj: dict) -> bool:
        """Creation never reconciles: dependents are only created by a reconcile."""
        _log.debug("Skipping reconciliation for dependent resource creation: %s", _describe(obj))
        return False

    def delete(self, obj: dict) -> bool:
        """Deletion reconciles so that the dependent can be recreated."""
        _log.debug("Reconciling due to dependent resource deletion: %s", _describe(obj))
        return True

    def generic(self, obj: dict) -> bool:
        """Generic events never reconcile."""
        _log.debug("Skipping reconcile due to generic event: %s", _describe(obj))
        return False

    def update(self, old: dict, new: dict) -> bool:
        """Reconcile unless the update only touched status or resource version."""
        if _without_volatile_fields(old) == _without_volatile_fields(new):
            return False
        _log.debug("Reconciling due to dependent resource update: %s", _describe(new))
        return True


def dependent_predicate_funcs() -> DependentPredicate:
    """Return the predicate used to filter events on dependent resources."""
    return DependentPredicate()