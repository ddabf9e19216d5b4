"""Admission handler that refuses unsafe CustomResourceDefinition updates."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any

from rukpak import crd as crd_checks
from rukpak.crd import ClusterClient

VALIDATION_KEY = "core.rukpak.io/safe-crd-upgrade-validation"
DISABLED = "false"

_log = logging.getLogger("rukpak.crdvalidator")


@dataclass
class AdmissionRequest:
    """A create or update request for a CRD; ``object`` is JSON text or a dict."""

    name: str
    operation: str
    object: Any


@dataclass
class AdmissionResponse:
    """The verdict on an admission request."""

    allowed: bool
    code: int = int(HTTPStatus.OK)
    message: str = ""


def _quote(text: str) -> str:
    return json.dumps(text)


def _decode(raw: Any) -> dict:
    if isinstance(raw, (bytes, bytearray, str)):
        raw = json.loads(raw)
    if not isinstance(raw, dict):
        raise ValueError("expected a JSON object")
    kind = raw.get("kind")
    if kind and kind != "CustomResourceDefinition":
        raise ValueError(f"unexpected kind {kind!r}")
    return raw


def is_disabled(crd: dict) -> bool:
    """True when the CRD opts out of upgrade validation by annotation."""
    annotations = (crd.get("metadata") or {}).get("annotations") or {}
    return annotations.get(VALIDATION_KEY) == DISABLED


class CrdValidator:
    """Decides whether a CRD create or update is a safe upgrade."""

    def __init__(self, client: ClusterClient, logger: logging.Logger | None = None) -> None:
        self.client = client
        self.log = logger or _log

    def handle(self, request: AdmissionRequest) -> AdmissionResponse:
        try:
            incoming = _decode(request.object)
        except ValueError as err:
            message = f"failed to decode CRD {_quote(request.name)}"
            self.log.error("%s: %s", message, err)
            return AdmissionResponse(allowed=False, code=int(HTTPStatus.BAD_REQUEST), message=f"{message}: {err}")

        if is_disabled(incoming):
            return AdmissionResponse(allowed=True)

        try:
            crd_checks.validate(self.client, incoming)
        except Exception as err:
            message = (
                f"failed to validate safety of {request.operation} for CRD {_quote(request.name)} "
                f"(NOTE: to disable this validation, set the {_quote(VALIDATION_KEY)} annotation "
                f"to {_quote(DISABLED)}): {err}"
            )
            self.log.info(message)
            return AdmissionResponse(allowed=False, code=int(HTTPStatus.FORBIDDEN), message=message)

        self.log.debug("admission allowed for %s of CRD %r", request.operation, request.name)
        return AdmissionResponse(allowed=True)