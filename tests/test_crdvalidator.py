import json
from http import HTTPStatus

from rukpak.crd import ClusterClient
from rukpak.crdvalidator import (
    DISABLED,
    VALIDATION_KEY,
    AdmissionRequest,
    AdmissionResponse,
    CrdValidator,
    is_disabled,
)

GROUP = "testing.example.com"
NAME = f"widgets.{GROUP}"


def _crd(version_names, stored, annotations=None):
    crd = {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {"name": NAME},
        "spec": {
            "group": GROUP,
            "names": {"plural": "widgets", "singular": "widget", "kind": "Widget", "listKind": "WidgetList"},
            "versions": [
                {"name": v, "served": True, "storage": True, "schema": {"openAPIV3Schema": {"type": "object"}}}
                for v in version_names
            ],
        },
        "status": {"storedVersions": stored},
    }
    if annotations:
        crd["metadata"]["annotations"] = annotations
    return crd


def _validator():
    return CrdValidator(ClusterClient(crds=[_crd(["v1"], ["v1"])]))


def test_allows_new_crd():
    validator = CrdValidator(ClusterClient())
    response = validator.handle(AdmissionRequest(NAME, "CREATE", _crd(["v1"], [])))
    assert response.allowed is True
    assert response.message == ""


def test_allows_safe_update_from_json_text():
    body = json.dumps(_crd(["v1", "v2"], ["v1"]))
    response = _validator().handle(AdmissionRequest(NAME, "UPDATE", body))
    assert response == AdmissionResponse(allowed=True)


def test_denies_unsafe_update():
    response = _validator().handle(AdmissionRequest(NAME, "UPDATE", _crd(["v2"], ["v2"])))
    assert response.allowed is False
    assert response.code == HTTPStatus.FORBIDDEN
    assert "cannot remove stored versions [v1]" in response.message
    assert f'set the "{VALIDATION_KEY}" annotation to "{DISABLED}"' in response.message
    assert response.message.startswith(f'failed to validate safety of UPDATE for CRD "{NAME}"')


def test_disabled_annotation_skips_validation():
    incoming = _crd(["v2"], ["v2"], annotations={VALIDATION_KEY: DISABLED})
    assert is_disabled(incoming) is True
    response = _validator().handle(AdmissionRequest(NAME, "UPDATE", incoming))
    assert response.allowed is True


def test_other_annotation_values_do_not_disable():
    assert is_disabled(_crd(["v1"], [], annotations={VALIDATION_KEY: "true"})) is False
    assert is_disabled(_crd(["v1"], [])) is False


def test_undecodable_request_is_errored():
    response = _validator().handle(AdmissionRequest(NAME, "CREATE", b"{not json"))
    assert response.allowed is False
    assert response.code == 400
    assert response.message.startswith(f'failed to decode CRD "{NAME}": ')


def test_wrong_kind_is_errored():
    obj = {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": NAME}}
    response = _validator().handle(AdmissionRequest(NAME, "CREATE", obj))
    assert response.code == HTTPStatus.BAD_REQUEST
    assert "ConfigMap" in response.message