"""Resource types for the core.rukpak.io/v1alpha1 API group.

Every resource maps to and from its plain JSON/YAML form through
``from_dict`` and ``to_dict``. Optional fields left empty are omitted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

GROUP = "core.rukpak.io"
VERSION = "v1alpha1"
GROUP_VERSION = f"{GROUP}/{VERSION}"

BUNDLE_KIND = "Bundle"
BUNDLE_DEPLOYMENT_KIND = "BundleDeployment"

TYPE_UNPACKED = "Unpacked"
REASON_UNPACK_PENDING = "UnpackPending"
REASON_UNPACKING = "Unpacking"
REASON_UNPACK_SUCCESSFUL = "UnpackSuccessful"
REASON_UNPACK_FAILED = "UnpackFailed"
REASON_PROCESSING_FINALIZER_FAILED = "ProcessingFinalizerFailed"

PHASE_PENDING = "Pending"
PHASE_UNPACKING = "Unpacking"
PHASE_FAILING = "Failing"
PHASE_UNPACKED = "Unpacked"

TYPE_HAS_VALID_BUNDLE = "HasValidBundle"
TYPE_INSTALLED = "Installed"
REASON_BUNDLE_LOAD_FAILED = "BundleLoadFailed"
REASON_READING_CONTENT_FAILED = "ReadingContentFailed"
REASON_ERROR_GETTING_CLIENT = "ErrorGettingClient"
REASON_ERROR_GETTING_RELEASE_STATE = "ErrorGettingReleaseState"
REASON_INSTALL_FAILED = "InstallFailed"
REASON_UPGRADE_FAILED = "UpgradeFailed"
REASON_RECONCILE_FAILED = "ReconcileFailed"
REASON_CREATE_DYNAMIC_WATCH_FAILED = "CreateDynamicWatchFailed"
REASON_INSTALLATION_SUCCEEDED = "InstallationSucceeded"

_PROVISIONER_CLASS_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


def _require(data: dict, key: str, where: str) -> Any:
    if not isinstance(data, dict):
        raise ValueError(f"{where}: expected an object, got {type(data).__name__}")
    if key not in data:
        raise ValueError(f"{where}: missing required field {key!r}")
    return data[key]


def _validate_provisioner_class(name: str) -> str:
    if not isinstance(name, str) or not _PROVISIONER_CLASS_PATTERN.match(name):
        raise ValueError(
            f"provisionerClassName {name!r} does not match "
            f"{_PROVISIONER_CLASS_PATTERN.pattern}"
        )
    return name


def _check_type_meta(data: dict, kind: str) -> None:
    api_version = data.get("apiVersion")
    if api_version and api_version != GROUP_VERSION:
        raise ValueError(f"unexpected apiVersion {api_version!r}, want {GROUP_VERSION!r}")
    found_kind = data.get("kind")
    if found_kind and found_kind != kind:
        raise ValueError(f"unexpected kind {found_kind!r}, want {kind!r}")


def _local_ref(data: Optional[dict]) -> str:
    return (data or {}).get("name", "")


def _local_ref_dict(name: str) -> dict:
    return {"name": name} if name else {}


class SourceType(str, Enum):
    """The kind of location bundle content is sourced from."""

    IMAGE = "image"
    GIT = "git"
    CONFIG_MAPS = "configMaps"
    UPLOAD = "upload"
    HTTP = "http"


@dataclass
class ImageSource:
    """A container image holding bundle contents."""

    ref: str
    pull_secret: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "ImageSource":
        return cls(ref=_require(data, "ref", "image"), pull_secret=data.get("pullSecret", ""))

    def to_dict(self) -> dict:
        out = {"ref": self.ref}
        if self.pull_secret:
            out["pullSecret"] = self.pull_secret
        return out


@dataclass
class GitRef:
    """A branch, tag or commit to check out."""

    branch: str = ""
    tag: str = ""
    commit: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "GitRef":
        data = data or {}
        return cls(
            branch=data.get("branch", ""),
            tag=data.get("tag", ""),
            commit=data.get("commit", ""),
        )

    def to_dict(self) -> dict:
        return {
            key: value
            for key, value in (("branch", self.branch), ("tag", self.tag), ("commit", self.commit))
            if value
        }


@dataclass
class Authorization:
    """How to authenticate against a remote source."""

    secret_name: str = ""
    insecure_skip_verify: bool = False

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "Authorization":
        data = data or {}
        return cls(
            secret_name=_local_ref(data.get("secret")),
            insecure_skip_verify=bool(data.get("insecureSkipVerify", False)),
        )

    def to_dict(self) -> dict:
        out: dict = {"secret": _local_ref_dict(self.secret_name)}
        if self.insecure_skip_verify:
            out["insecureSkipVerify"] = True
        return out


@dataclass
class GitSource:
    """A git repository holding bundle contents."""

    repository: str
    ref: GitRef = field(default_factory=GitRef)
    directory: str = ""
    auth: Authorization = field(default_factory=Authorization)

    @classmethod
    def from_dict(cls, data: dict) -> "GitSource":
        return cls(
            repository=_require(data, "repository", "git"),
            ref=GitRef.from_dict(_require(data, "ref", "git")),
            directory=data.get("directory", ""),
            auth=Authorization.from_dict(data.get("auth")),
        )

    def to_dict(self) -> dict:
        out: dict = {"repository": self.repository}
        if self.directory:
            out["directory"] = self.directory
        out["ref"] = self.ref.to_dict()
        out["auth"] = self.auth.to_dict()
        return out


@dataclass
class ConfigMapSource:
    """A config map whose files appear at ``path`` within the bundle."""

    config_map_name: str
    path: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "ConfigMapSource":
        return cls(
            config_map_name=_local_ref(_require(data, "configMap", "configMaps[]")),
            path=data.get("path", ""),
        )

    def to_dict(self) -> dict:
        out: dict = {"configMap": _local_ref_dict(self.config_map_name)}
        if self.path:
            out["path"] = self.path
        return out


@dataclass
class HTTPSource:
    """A remote URL holding bundle contents."""

    url: str
    auth: Authorization = field(default_factory=Authorization)

    @classmethod
    def from_dict(cls, data: dict) -> "HTTPSource":
        return cls(url=_require(data, "url", "http"), auth=Authorization.from_dict(data.get("auth")))

    def to_dict(self) -> dict:
        return {"url": self.url, "auth": self.auth.to_dict()}


@dataclass
class UploadSource:
    """Content pushed through the bundle upload service."""

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "UploadSource":
        return cls()

    def to_dict(self) -> dict:
        return {}


@dataclass
class BundleSource:
    """Where the content of a bundle comes from."""

    type: SourceType
    image: Optional[ImageSource] = None
    git: Optional[GitSource] = None
    config_maps: list[ConfigMapSource] = field(default_factory=list)
    upload: Optional[UploadSource] = None
    http: Optional[HTTPSource] = None

    @classmethod
    def from_dict(cls, data: dict) -> "BundleSource":
        raw_type = _require(data, "type", "source")
        try:
            source_type = SourceType(raw_type)
        except ValueError:
            raise ValueError(f"source: unknown type {raw_type!r}") from None
        return cls(
            type=source_type,
            image=ImageSource.from_dict(data["image"]) if data.get("image") is not None else None,
            git=GitSource.from_dict(data["git"]) if data.get("git") is not None else None,
            config_maps=[ConfigMapSource.from_dict(item) for item in data.get("configMaps") or []],
            upload=UploadSource.from_dict(data["upload"]) if data.get("upload") is not None else None,
            http=HTTPSource.from_dict(data["http"]) if data.get("http") is not None else None,
        )

    def to_dict(self) -> dict:
        out: dict = {"type": self.type.value}
        if self.image is not None:
            out["image"] = self.image.to_dict()
        if self.git is not None:
            out["git"] = self.git.to_dict()
        if self.config_maps:
            out["configMaps"] = [item.to_dict() for item in self.config_maps]
        if self.upload is not None:
            out["upload"] = self.upload.to_dict()
        if self.http is not None:
            out["http"] = self.http.to_dict()
        return out


@dataclass
class BundleSpec:
    """Desired state of a bundle."""

    provisioner_class_name: str
    source: BundleSource

    def __post_init__(self) -> None:
        _validate_provisioner_class(self.provisioner_class_name)

    @classmethod
    def from_dict(cls, data: dict) -> "BundleSpec":
        return cls(
            provisioner_class_name=_require(data, "provisionerClassName", "spec"),
            source=BundleSource.from_dict(_require(data, "source", "spec")),
        )

    def to_dict(self) -> dict:
        return {"provisionerClassName": self.provisioner_class_name, "source": self.source.to_dict()}


@dataclass
class Condition:
    """One observed condition of a resource."""

    type: str
    status: str
    reason: str = ""
    message: str = ""
    observed_generation: int = 0
    last_transition_time: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "Condition":
        return cls(
            type=_require(data, "type", "condition"),
            status=_require(data, "status", "condition"),
            reason=data.get("reason", ""),
            message=data.get("message", ""),
            observed_generation=int(data.get("observedGeneration", 0)),
            last_transition_time=data.get("lastTransitionTime", ""),
        )

    def to_dict(self) -> dict:
        out: dict = {"type": self.type, "status": self.status}
        if self.observed_generation:
            out["observedGeneration"] = self.observed_generation
        out["lastTransitionTime"] = self.last_transition_time
        out["reason"] = self.reason
        out["message"] = self.message
        return out


def _conditions_from(data: dict) -> list[Condition]:
    return [Condition.from_dict(item) for item in data.get("conditions") or []]


@dataclass
class BundleStatus:
    """Observed state of a bundle."""

    phase: str = ""
    resolved_source: Optional[BundleSource] = None
    observed_generation: int = 0
    conditions: list[Condition] = field(default_factory=list)
    content_url: str = ""

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "BundleStatus":
        data = data or {}
        resolved = data.get("resolvedSource")
        return cls(
            phase=data.get("phase", ""),
            resolved_source=BundleSource.from_dict(resolved) if resolved is not None else None,
            observed_generation=int(data.get("observedGeneration", 0)),
            conditions=_conditions_from(data),
            content_url=data.get("contentURL", ""),
        )

    def to_dict(self) -> dict:
        out: dict = {}
        if self.phase:
            out["phase"] = self.phase
        if self.resolved_source is not None:
            out["resolvedSource"] = self.resolved_source.to_dict()
        if self.observed_generation:
            out["observedGeneration"] = self.observed_generation
        if self.conditions:
            out["conditions"] = [c.to_dict() for c in self.conditions]
        if self.content_url:
            out["contentURL"] = self.content_url
        return out


_META_FIELDS = ("name", "namespace", "labels", "annotations", "generation", "resourceVersion", "finalizers")


@dataclass
class ObjectMeta:
    """Standard object metadata; fields not modelled are kept in ``extra``."""

    name: str = ""
    namespace: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    generation: int = 0
    resource_version: str = ""
    finalizers: list[str] = field(default_factory=list)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "ObjectMeta":
        data = data or {}
        return cls(
            name=data.get("name", ""),
            namespace=data.get("namespace", ""),
            labels=dict(data.get("labels") or {}),
            annotations=dict(data.get("annotations") or {}),
            generation=int(data.get("generation", 0)),
            resource_version=data.get("resourceVersion", ""),
            finalizers=list(data.get("finalizers") or []),
            extra={k: v for k, v in data.items() if k not in _META_FIELDS},
        )

    def to_dict(self) -> dict:
        out: dict = dict(self.extra)
        for key, value in (
            ("name", self.name),
            ("namespace", self.namespace),
            ("labels", dict(self.labels)),
            ("annotations", dict(self.annotations)),
            ("generation", self.generation),
            ("resourceVersion", self.resource_version),
            ("finalizers", list(self.finalizers)),
        ):
            if value:
                out[key] = value
        return out


@dataclass
class Bundle:
    """A cluster-scoped bundle of content to be unpacked by a provisioner."""

    spec: BundleSpec
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    status: BundleStatus = field(default_factory=BundleStatus)

    @classmethod
    def from_dict(cls, data: dict) -> "Bundle":
        _check_type_meta(data, BUNDLE_KIND)
        return cls(
            spec=BundleSpec.from_dict(_require(data, "spec", BUNDLE_KIND)),
            metadata=ObjectMeta.from_dict(data.get("metadata")),
            status=BundleStatus.from_dict(data.get("status")),
        )

    def to_dict(self) -> dict:
        return {
            "apiVersion": GROUP_VERSION,
            "kind": BUNDLE_KIND,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }

    def provisioner_class_name(self) -> str:
        return self.spec.provisioner_class_name


@dataclass
class BundleTemplate:
    """The bundle a deployment generates and manages."""

    spec: BundleSpec
    metadata: ObjectMeta = field(default_factory=ObjectMeta)

    @classmethod
    def from_dict(cls, data: dict) -> "BundleTemplate":
        return cls(
            spec=BundleSpec.from_dict(_require(data, "spec", "template")),
            metadata=ObjectMeta.from_dict(data.get("metadata")),
        )

    def to_dict(self) -> dict:
        return {"metadata": self.metadata.to_dict(), "spec": self.spec.to_dict()}


@dataclass
class BundleDeploymentSpec:
    """Desired state of a bundle deployment."""

    provisioner_class_name: str
    template: Optional[BundleTemplate] = None
    config: Any = None

    def __post_init__(self) -> None:
        _validate_provisioner_class(self.provisioner_class_name)

    @classmethod
    def from_dict(cls, data: dict) -> "BundleDeploymentSpec":
        template = data.get("template") if isinstance(data, dict) else None
        return cls(
            provisioner_class_name=_require(data, "provisionerClassName", "spec"),
            template=BundleTemplate.from_dict(template) if template is not None else None,
            config=data.get("config"),
        )

    def to_dict(self) -> dict:
        out: dict = {
            "provisionerClassName": self.provisioner_class_name,
            "template": self.template.to_dict() if self.template is not None else None,
        }
        if self.config is not None:
            out["config"] = self.config
        return out


@dataclass
class BundleDeploymentStatus:
    """Observed state of a bundle deployment."""

    conditions: list[Condition] = field(default_factory=list)
    active_bundle: str = ""
    observed_generation: int = 0

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "BundleDeploymentStatus":
        data = data or {}
        return cls(
            conditions=_conditions_from(data),
            active_bundle=data.get("activeBundle", ""),
            observed_generation=int(data.get("observedGeneration", 0)),
        )

    def to_dict(self) -> dict:
        out: dict = {}
        if self.conditions:
            out["conditions"] = [c.to_dict() for c in self.conditions]
        if self.active_bundle:
            out["activeBundle"] = self.active_bundle
        if self.observed_generation:
            out["observedGeneration"] = self.observed_generation
        return out


@dataclass
class BundleDeployment:
    """A cluster-scoped deployment of a templated bundle."""

    spec: BundleDeploymentSpec
    metadata: ObjectMeta = field(default_factory=ObjectMeta)
    status: BundleDeploymentStatus = field(default_factory=BundleDeploymentStatus)

    @classmethod
    def from_dict(cls, data: dict) -> "BundleDeployment":
        _check_type_meta(data, BUNDLE_DEPLOYMENT_KIND)
        return cls(
            spec=BundleDeploymentSpec.from_dict(_require(data, "spec", BUNDLE_DEPLOYMENT_KIND)),
            metadata=ObjectMeta.from_dict(data.get("metadata")),
            status=BundleDeploymentStatus.from_dict(data.get("status")),
        )

    def to_dict(self) -> dict:
        return {
            "apiVersion": GROUP_VERSION,
            "kind": BUNDLE_DEPLOYMENT_KIND,
            "metadata": self.metadata.to_dict(),
            "spec": self.spec.to_dict(),
            "status": self.status.to_dict(),
        }


_PACKAGE_KEY = "operators.operatorframework.io.bundle.package.v1"
_CHANNELS_KEY = "operators.operatorframework.io.bundle.channels.v1"
_DEFAULT_CHANNEL_KEY = "operators.operatorframework.io.bundle.channel.default.v1"


@dataclass
class Annotations:
    """Annotations describing a registry bundle."""

    package_name: str = ""
    channels: str = ""
    default_channel_name: str = ""

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "Annotations":
        data = data or {}
        return cls(
            package_name=data.get(_PACKAGE_KEY, ""),
            channels=data.get(_CHANNELS_KEY, ""),
            default_channel_name=data.get(_DEFAULT_CHANNEL_KEY, ""),
        )


@dataclass
class AnnotationsFile:
    """The parsed contents of ``metadata/annotations.yaml``."""

    annotations: Annotations = field(default_factory=Annotations)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "AnnotationsFile":
        data = data or {}
        if not isinstance(data, dict):
            raise ValueError("annotations file: expected an object")
        return cls(annotations=Annotations.from_dict(data.get("annotations")))