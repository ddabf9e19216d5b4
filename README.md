# rukpak

Tools for operator bundles and the `core.rukpak.io/v1alpha1` API. Every
Kubernetes object is handled as plain JSON data, made of nested dicts and lists.

- **`rukpak.api`** has dataclass models of `Bundle` and `BundleDeployment`.
  Bundle sources are described by `BundleSource` with `ImageSource`,
  `GitSource`, `ConfigMapSource`, `UploadSource` and `HTTPSource`. A bundle's
  `metadata/annotations.yaml` is modelled by `AnnotationsFile` and
  `Annotations`. Each resource model provides `from_dict` and `to_dict`.
  `provisionerClassName` is checked against `^[a-z0-9]([-a-z0-9]*[a-z0-9])?$`.
- **`rukpak.crd`** checks whether a CustomResourceDefinition upgrade is safe:
  - `validate`, `validate_crd_compatibility`, `validate_existing_crs` and
    `safe_storage_version_upgrade` do the checking.
  - An update is refused when it removes a stored version.
  - An update is also refused when its changed or added schema would reject
    custom resources that already exist. The check uses a Draft 4 JSON Schema
    validator.
  - On failure the functions raise `CRDValidationError`.
- **`rukpak.crdvalidator`** has `CrdValidator`, an admission handler built on
  those checks.
  - It turns an `AdmissionRequest` into an `AdmissionResponse`.
  - An undecodable object gets code 400. An unsafe update gets code 403.
  - The check is skipped for a CRD annotated
    `core.rukpak.io/safe-crd-upgrade-validation: "false"` (see `is_disabled`).
- **`rukpak.convert`** turns a registry+v1 bundle (a ClusterServiceVersion,
  CRDs and other manifests) into a plain bundle. The result holds a namespace,
  service accounts, RBAC objects, CRDs and deployments.
- **`rukpak.predicate`** has `DependentPredicate`, returned by
  `dependent_predicate_funcs()`. It decides which events on dependent objects
  cause a reconcile:
  - `create` and `generic` return `False`.
  - `delete` returns `True`.
  - `update` returns `True` unless the only changes were to `status` or
    `metadata.resourceVersion`.
- **`rukpak.unpack`** packs a bundle directory into a gzipped tar archive.

## Installation

```
pip install .
```

To run the tests:

```
pip install .[test]
pytest
```

## Converting a registry+v1 bundle

```python
from rukpak.convert import registry_v1_to_plain

files = registry_v1_to_plain("my-operator-bundle")
print(files["manifests/manifest.yaml"].decode())
```

Input and output:

- The directory must contain `metadata/annotations.yaml` and a flat
  `manifests/` directory.
- The result maps relative paths to file contents. It has a single entry,
  `manifests/manifest.yaml`.

`convert(registry, install_namespace, target_namespaces)` works on a
`RegistryV1` that you have already parsed. `simple(registry)` calls it with
the defaults:

- The install namespace is taken from the CSV's
  `operatorframework.io/suggested-namespace` annotation. Without it, the
  namespace is `<package>-system`.
- All namespaces are targeted.

`ConversionError` is raised in these cases:

- The CSV does not support the `AllNamespaces` install mode.
- The requested target namespaces are not allowed.
- The CSV declares owned API service definitions or webhook definitions.
- A subdirectory appears under `manifests/`.

## Checking a CRD upgrade

`ClusterClient` is an in-memory store of the CRDs and custom resources that
already exist. It is built from lists of those objects.

```python
from rukpak.crd import ClusterClient, CRDValidationError, validate

client = ClusterClient(crds=[existing_crd], resources=[existing_cr])
try:
    validate(client, new_crd)
except CRDValidationError as err:
    print("unsafe upgrade:", err)
```

`validate` returns the existing CRD. If no CRD of that name exists, it returns
`None`, because a new CRD is always accepted.

## Packing a bundle directory

```
rukpak-unpack --bundle-dir ./my-bundle > bundle.json
```

The command prints a JSON object of the form `{"content": "<base64>"}`.
`content` holds the gzipped tar of the directory, encoded in base64:

- Symbolic links are skipped.
- Ownership is cleared in the archive.

`rukpak-unpack --version` prints the installed package version.

In Python, `build_bundle_archive(bundle_dir)` returns the archive bytes
directly.

## What this package does not do

This package provides data models and checks, not a running system:

- It does not connect to a Kubernetes cluster. `ClusterClient` only serves the
  objects it is given.
- It contains no controllers or provisioners that reconcile `Bundle` or
  `BundleDeployment` objects.
- It has no webhook or HTTP server. `CrdValidator.handle` must be called by
  your own server code.
- It has no bundle storage or upload service, and no command-line client for
  running bundles on a cluster.