import pytest
import yaml

from rukpak.convert import (
    MAX_NAME_LENGTH,
    ConversionError,
    Plain,
    RegistryV1,
    convert,
    generate_name,
    registry_v1_to_plain,
    simple,
    validate_target_namespaces,
)

ALL_MODES = ["OwnNamespace", "SingleNamespace", "MultiNamespace", "AllNamespaces"]
RULES = [{"apiGroups": [""], "resources": ["pods"], "verbs": ["get"]}]


def make_csv(modes=ALL_MODES, annotations=None, permissions=None, cluster_permissions=None, extra_spec=None):
    spec = {
        "installModes": [{"type": m, "supported": True} for m in modes],
        "install": {
            "strategy": "deployment",
            "spec": {
                "deployments": [
                    {
                        "name": "test-controller",
                        "label": {"app": "test"},
                        "spec": {
                            "template": {
                                "metadata": {"annotations": {"tmpl": "yes"}},
                                "spec": {"serviceAccountName": "test-sa"},
                            }
                        },
                    }
                ],
                "permissions": permissions if permissions is not None else [
                    {"serviceAccountName": "test-sa", "rules": RULES}
                ],
                "clusterPermissions": cluster_permissions if cluster_permissions is not None else [
                    {"serviceAccountName": "other-sa", "rules": RULES}
                ],
            },
        },
    }
    spec.update(extra_spec or {})
    return {
        "apiVersion": "operators.coreos.com/v1alpha1",
        "kind": "ClusterServiceVersion",
        "metadata": {"name": "test.v1", "annotations": annotations or {"csv": "yes"}},
        "spec": spec,
    }


def kinds(plain: Plain):
    return [obj["kind"] for obj in plain.objects]


def test_simple_all_namespaces_layout():
    plain = simple(RegistryV1(package_name="test", csv=make_csv()))
    assert kinds(plain) == [
        "Namespace",
        "ServiceAccount",
        "ServiceAccount",
        "ClusterRole",
        "ClusterRole",
        "ClusterRoleBinding",
        "ClusterRoleBinding",
        "Deployment",
    ]
    assert plain.objects[0]["metadata"]["name"] == "test-system"
    deployment = plain.objects[-1]
    assert deployment["metadata"]["namespace"] == "test-system"
    assert deployment["metadata"]["labels"] == {"app": "test"}
    annotations = deployment["metadata"]["annotations"]
    assert annotations["olm.targetNamespaces"] == ""
    assert annotations["csv"] == "yes"
    assert annotations["tmpl"] == "yes"


def test_suggested_namespace_is_used():
    csv = make_csv(annotations={"operatorframework.io/suggested-namespace": "suggested"})
    plain = simple(RegistryV1(package_name="test", csv=csv))
    assert plain.objects[0]["metadata"]["name"] == "suggested"
    assert all(
        obj["metadata"].get("namespace") in (None, "suggested") for obj in plain.objects
    )


def test_default_service_account_not_emitted():
    csv = make_csv(permissions=[], cluster_permissions=[])
    csv["spec"]["install"]["spec"]["deployments"][0]["spec"]["template"]["spec"] = {}
    plain = simple(RegistryV1(package_name="test", csv=csv))
    assert kinds(plain) == ["Namespace", "Deployment"]


def test_cluster_role_bindings_reference_their_roles():
    plain = simple(RegistryV1(package_name="test", csv=make_csv()))
    roles = [o for o in plain.objects if o["kind"] == "ClusterRole"]
    bindings = [o for o in plain.objects if o["kind"] == "ClusterRoleBinding"]
    assert [r["metadata"]["name"] for r in roles] == [b["roleRef"]["name"] for b in bindings]
    assert {b["subjects"][0]["name"] for b in bindings} == {"test-sa", "other-sa"}
    for binding in bindings:
        assert binding["subjects"][0]["namespace"] == "test-system"
        assert binding["roleRef"]["kind"] == "ClusterRole"


def test_single_namespace_creates_roles():
    plain = convert(RegistryV1(package_name="test", csv=make_csv()), "install-ns", ["watched"])
    role = next(o for o in plain.objects if o["kind"] == "Role")
    binding = next(o for o in plain.objects if o["kind"] == "RoleBinding")
    assert role["metadata"]["namespace"] == "install-ns"
    assert role["rules"] == RULES
    assert binding["roleRef"] == {"apiGroup": "rbac.authorization.k8s.io", "kind": "Role", "name": role["metadata"]["name"]}
    deployment = plain.objects[-1]
    assert deployment["metadata"]["annotations"]["olm.targetNamespaces"] == "watched"


def test_crds_and_others_come_before_deployments():
    crd = {"apiVersion": "apiextensions.k8s.io/v1", "kind": "CustomResourceDefinition", "metadata": {"name": "a.b"}}
    other = {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "cm"}}
    plain = simple(RegistryV1(package_name="test", csv=make_csv(), crds=[crd], others=[other]))
    assert kinds(plain)[-3:] == ["CustomResourceDefinition", "ConfigMap", "Deployment"]


def test_all_namespaces_required():
    csv = make_csv(modes=["OwnNamespace", "SingleNamespace"])
    with pytest.raises(ConversionError, match="AllNamespace install mode must be enabled"):
        simple(RegistryV1(package_name="test", csv=csv))


def test_api_service_definitions_rejected():
    csv = make_csv(extra_spec={"apiservicedefinitions": {"owned": [{"name": "x"}]}})
    with pytest.raises(ConversionError, match="apiServiceDefintions are not supported"):
        simple(RegistryV1(package_name="test", csv=csv))


def test_webhook_definitions_rejected():
    csv = make_csv(extra_spec={"webhookdefinitions": [{"type": "ValidatingAdmissionWebhook"}]})
    with pytest.raises(ConversionError, match="webhookDefinitions are not supported"):
        simple(RegistryV1(package_name="test", csv=csv))


def test_multi_namespace_unsupported():
    csv = make_csv(modes=["AllNamespaces"])
    with pytest.raises(ConversionError, match=r"do not support target namespaces \[a b\]"):
        convert(RegistryV1(package_name="test", csv=csv), "ns", ["a", "b"])


@pytest.mark.parametrize(
    "modes,install_ns,targets",
    [
        (["AllNamespaces"], "ns", []),
        (["AllNamespaces"], "ns", [""]),
        (["SingleNamespace"], "ns", ["other"]),
        (["OwnNamespace"], "ns", ["ns"]),
        (["MultiNamespace"], "ns", ["a", "b"]),
    ],
)
def test_validate_target_namespaces_accepts(modes, install_ns, targets):
    assert validate_target_namespaces(set(modes), install_ns, targets) is None


@pytest.mark.parametrize(
    "modes,install_ns,targets",
    [
        (["OwnNamespace"], "ns", []),
        (["OwnNamespace"], "ns", ["other"]),
        (["SingleNamespace"], "ns", ["a", "b"]),
    ],
)
def test_validate_target_namespaces_rejects(modes, install_ns, targets):
    with pytest.raises(ConversionError, match="do not support target namespaces"):
        validate_target_namespaces(set(modes), install_ns, targets)


def test_generate_name_is_stable_and_bounded():
    obj = ["csv", {"serviceAccountName": "sa", "rules": RULES}]
    first = generate_name("base", obj)
    assert first == generate_name("base", obj)
    assert first.startswith("base-")
    assert first != generate_name("base", ["csv", {"serviceAccountName": "other"}])
    long_name = generate_name("x" * 100, obj)
    assert len(long_name) <= MAX_NAME_LENGTH
    assert long_name.split("-")[-1] == first.split("-")[-1]
    assert set(long_name.split("-")[-1]) <= set("bcdfghjklmnpqrstvwxz2456789")


def write_bundle(root, csv, extra_files=None):
    (root / "metadata").mkdir()
    (root / "metadata" / "annotations.yaml").write_text(
        yaml.safe_dump({"annotations": {"operators.operatorframework.io.bundle.package.v1": "test"}})
    )
    manifests = root / "manifests"
    manifests.mkdir()
    (manifests / "csv.yaml").write_text(yaml.safe_dump(csv))
    for name, content in (extra_files or {}).items():
        (manifests / name).write_text(content)


def test_registry_v1_to_plain(tmp_path):
    crd = {"apiVersion": "apiextensions.k8s.io/v1", "kind": "CustomResourceDefinition", "metadata": {"name": "a.b"}}
    cm = {"apiVersion": "v1", "kind": "ConfigMap", "metadata": {"name": "cm"}}
    extras = {"crd.yaml": yaml.safe_dump(crd), "other.yaml": "---\n" + yaml.safe_dump(cm) + "---\n"}
    write_bundle(tmp_path, make_csv(), extras)
    files = registry_v1_to_plain(tmp_path)
    assert list(files) == ["manifests/manifest.yaml"]
    docs = [d for d in yaml.safe_load_all(files["manifests/manifest.yaml"]) if d is not None]
    assert docs[0] == {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": "test-system"}}
    assert [d["kind"] for d in docs][-3:] == ["CustomResourceDefinition", "ConfigMap", "Deployment"]
    assert crd in docs and cm in docs


def test_registry_v1_to_plain_rejects_subdirectories(tmp_path):
    write_bundle(tmp_path, make_csv())
    (tmp_path / "manifests" / "nested").mkdir()
    with pytest.raises(ConversionError, match='found "manifests/nested"'):
        registry_v1_to_plain(tmp_path)


def test_registry_v1_to_plain_missing_annotations(tmp_path):
    (tmp_path / "manifests").mkdir()
    with pytest.raises(FileNotFoundError):
        registry_v1_to_plain(tmp_path)


def test_registry_v1_to_plain_bad_yaml(tmp_path):
    write_bundle(tmp_path, make_csv(), {"broken.yaml": "key: [unclosed"})
    with pytest.raises(ConversionError, match='read "broken.yaml"'):
        registry_v1_to_plain(tmp_path)