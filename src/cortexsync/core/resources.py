"""
Desired-state model and manifest loading.

Manifests are Kubernetes-style YAML documents:

    apiVersion: rules.cortex.crossplane.io/v1alpha1
    kind: RuleGroup
    metadata:
      name: node-alerts
      annotations:
        crossplane.io/external-name: node-alerts
    spec:
      providerConfigRef:
        name: default
      forProvider:
        namespace: infra
        interval: 1m
        rules:
          - alert: HighCPU
            expr: cpu > 0.8
            for: 5m

Specs are frozen; only `ManagedResource.status` is written by the core.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import yaml

from .errors import ConfigError

EXTERNAL_NAME_ANNOTATION = "crossplane.io/external-name"

KIND_RULE_GROUP = "RuleGroup"
KIND_ALERTMANAGER_CONFIGURATION = "AlertManagerConfiguration"


class ManifestError(ConfigError):
    """Raised when a manifest document is structurally invalid."""


def _text(data: Mapping[str, Any], key: str) -> Optional[str]:
    """Return data[key] as authored; YAML numbers and booleans are rejected, not stringified."""
    value = data.get(key)
    if value is None or isinstance(value, str):
        return value
    raise ManifestError(f"{key} must be a string, got {type(value).__name__} {value!r}; quote it in the manifest")


def _frozen_map(value: Any, what: str) -> Mapping[str, str]:
    if value is None:
        return MappingProxyType({})
    if not isinstance(value, Mapping):
        raise ManifestError(f"{what} must be a mapping")
    for k, v in value.items():
        if not isinstance(k, str) or not isinstance(v, str):
            raise ManifestError(f"{what}: {k!r}: {v!r} must map a string to a string; quote it in the manifest")
    return MappingProxyType(dict(value))


# ---------- Desired specs ----------

@dataclass(frozen=True)
class RuleSpec:
    """One rule as authored by the user. Exactly one of record/alert must be set."""
    expr: str
    record: Optional[str] = None
    alert: Optional[str] = None
    for_: Optional[str] = None
    labels: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    annotations: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RuleSpec":
        if not isinstance(data, Mapping):
            raise ManifestError("each rule must be a mapping")

        return cls(
            expr=_text(data, "expr") or "",
            record=_text(data, "record"),
            alert=_text(data, "alert"),
            for_=_text(data, "for"),
            labels=_frozen_map(data.get("labels"), "labels"),
            annotations=_frozen_map(data.get("annotations"), "annotations"),
        )


@dataclass(frozen=True)
class RuleGroupSpec:
    namespace: str
    rules: Tuple[RuleSpec, ...] = ()
    interval: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "RuleGroupSpec":
        namespace = (_text(data, "namespace") or "").strip()
        if not namespace:
            raise ManifestError("forProvider.namespace is required")
        rules = data.get("rules")
        if not isinstance(rules, list) or not rules:
            raise ManifestError("forProvider.rules must be a non-empty list")
        return cls(
            namespace=namespace,
            rules=tuple(RuleSpec.from_dict(r) for r in rules),
            interval=_text(data, "interval"),
        )


@dataclass(frozen=True)
class AlertmanagerConfigurationSpec:
    alertmanager_config: str
    template_files: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AlertmanagerConfigurationSpec":
        doc = data.get("alertmanager_config")
        if not isinstance(doc, str) or not doc:
            raise ManifestError("forProvider.alertmanager_config is required")
        templates = _frozen_map(data.get("template_files"), "forProvider.template_files")
        return cls(alertmanager_config=doc, template_files=templates)


DesiredSpec = Union[RuleGroupSpec, AlertmanagerConfigurationSpec]


# ---------- Status ----------

@dataclass
class Condition:
    type: str
    status: str
    reason: str
    last_transition_time: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "type": self.type,
            "status": self.status,
            "reason": self.reason,
            "lastTransitionTime": self.last_transition_time,
        }


@dataclass
class ResourceStatus:
    """Status reported back to the state store for one managed object."""
    conditions: Dict[str, Condition] = field(default_factory=dict)
    error: str = ""
    at_provider: Dict[str, Any] = field(default_factory=dict)

    def set_condition(self, cond: Condition) -> None:
        prev = self.conditions.get(cond.type)
        if prev and prev.status == cond.status and prev.reason == cond.reason:
            return
        if not cond.last_transition_time:
            cond.last_transition_time = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        self.conditions[cond.type] = cond

    def set_available(self) -> None:
        self.set_condition(Condition(type="Ready", status="True", reason="Available"))

    def clear_available(self) -> None:
        self.conditions.pop("Ready", None)

    def is_available(self) -> bool:
        c = self.conditions.get("Ready")
        return bool(c and c.status == "True" and c.reason == "Available")

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"conditions": [c.to_dict() for c in self.conditions.values()]}
        if self.error:
            out["error"] = self.error
        if self.at_provider:
            out["atProvider"] = dict(self.at_provider)
        return out


# ---------- Managed object ----------

@dataclass
class ManagedResource:
    kind: str
    name: str
    spec: DesiredSpec
    provider_config_ref: str = "default"
    external_name: str = ""
    deleting: bool = False
    status: ResourceStatus = field(default_factory=ResourceStatus)

    def __post_init__(self) -> None:
        if not self.external_name:
            self.external_name = self.name

    @property
    def key(self) -> str:
        return f"{self.kind}/{self.name}"


_SPEC_PARSERS = {
    KIND_RULE_GROUP: RuleGroupSpec.from_dict,
    KIND_ALERTMANAGER_CONFIGURATION: AlertmanagerConfigurationSpec.from_dict,
}


def _block(parent: Mapping[str, Any], key: str, where: str) -> Mapping[str, Any]:
    value = parent.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ManifestError(f"{where}.{key} must be a mapping")
    return value


def resource_from_manifest(doc: Mapping[str, Any]) -> ManagedResource:
    """Build a ManagedResource from one decoded manifest document."""
    if not isinstance(doc, Mapping):
        raise ManifestError("manifest document must be a mapping")
    kind = str(doc.get("kind") or "")
    parser = _SPEC_PARSERS.get(kind)
    if parser is None:
        raise ManifestError(f"unsupported kind {kind!r}")

    meta = _block(doc, "metadata", kind)
    name = str(meta.get("name") or "").strip()
    if not name:
        raise ManifestError(f"{kind}: metadata.name is required")
    annotations = _block(meta, "annotations", f"{kind}/{name}: metadata")

    spec_block = _block(doc, "spec", f"{kind}/{name}")
    for_provider = spec_block.get("forProvider")
    if not isinstance(for_provider, Mapping):
        raise ManifestError(f"{kind}/{name}: spec.forProvider is required")
    try:
        spec = parser(for_provider)
    except ManifestError as exc:
        raise ManifestError(f"{kind}/{name}: {exc}") from exc

    pc_ref = _block(spec_block, "providerConfigRef", f"{kind}/{name}: spec").get("name") or "default"
    return ManagedResource(
        kind=kind,
        name=name,
        spec=spec,
        provider_config_ref=str(pc_ref),
        external_name=str(annotations.get(EXTERNAL_NAME_ANNOTATION) or ""),
        deleting=bool(meta.get("deletionTimestamp")),
    )


def load_manifests(paths: Iterable[Union[str, Path]]) -> List[ManagedResource]:
    """Read every YAML document from *paths* (files or directories of *.yml/*.yaml)."""
    files: List[Path] = []
    for p in paths:
        path = Path(p)
        if path.is_dir():
            files.extend(sorted(f for f in path.iterdir() if f.suffix in (".yml", ".yaml")))
        elif path.is_file():
            files.append(path)
        else:
            raise FileNotFoundError(f"Manifest not found: {p}")

    out: List[ManagedResource] = []
    for f in files:
        with open(f, "r", encoding="utf-8") as fh:
            try:
                docs = [d for d in yaml.safe_load_all(fh) if d]
            except yaml.YAMLError as exc:
                raise ManifestError(f"{f}: invalid YAML: {exc}") from exc
        out.extend(resource_from_manifest(d) for d in docs)
    return out
