"""
Native (remote) shapes for Cortex rule groups and Alertmanager configs.

The ruler speaks Prometheus rule-file YAML. Rule names and expressions are
kept as scalar tokens so that a value authored as `"HighCPU"`, `'HighCPU'`
or `HighCPU` ends up as the same scalar, exactly as the remote YAML parser
would see it.

- ScalarToken.from_text: parse a fragment into a single scalar (or fail)
- rule_group_to_yaml / rule_group_from_yaml: wire codec for the ruler API
- alertmanager_to_yaml / alertmanager_from_yaml: wire codec for the alerts API
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .duration import format_duration, parse_duration
from .errors import TranslationError


@dataclass(frozen=True)
class ScalarToken:
    """A single YAML scalar: its resolved value plus the tag/style it was written with."""
    value: str
    tag: str = "tag:yaml.org,2002:str"
    style: Optional[str] = None

    @classmethod
    def from_node(cls, node: yaml.Node) -> "ScalarToken":
        if not isinstance(node, yaml.ScalarNode):
            raise TranslationError(f"expected a scalar, got a {node.id}")
        return cls(value=node.value, tag=node.tag, style=node.style)

    @classmethod
    def from_text(cls, text: str, *, field_name: str = "value") -> "ScalarToken":
        """Parse *text* as a YAML document holding exactly one scalar."""
        try:
            node = yaml.compose(text, Loader=yaml.SafeLoader)
        except yaml.YAMLError as exc:
            raise TranslationError(f"cannot parse {field_name} {text!r}: {exc}") from exc
        if node is None:
            raise TranslationError(f"{field_name} is empty")
        try:
            return cls.from_node(node)
        except TranslationError as exc:
            raise TranslationError(f"{field_name} {text!r}: {exc}") from exc

    def is_zero(self) -> bool:
        return self.value == ""


@dataclass(frozen=True)
class NativeRule:
    """One rule as the ruler stores it. Exactly one of record/alert is set."""
    expr: ScalarToken
    record: Optional[ScalarToken] = None
    alert: Optional[ScalarToken] = None
    for_ms: int = 0
    labels: Optional[Dict[str, str]] = None
    annotations: Optional[Dict[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        if self.record is not None:
            out["record"] = self.record.value
        if self.alert is not None:
            out["alert"] = self.alert.value
        out["expr"] = self.expr.value
        if self.for_ms:
            out["for"] = format_duration(self.for_ms)
        if self.labels:
            out["labels"] = dict(self.labels)
        if self.annotations:
            out["annotations"] = dict(self.annotations)
        return out


@dataclass(frozen=True)
class NativeRuleGroup:
    name: str
    interval_ms: int = 0
    rules: Tuple[NativeRule, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"name": self.name}
        if self.interval_ms:
            out["interval"] = format_duration(self.interval_ms)
        out["rules"] = [r.to_dict() for r in self.rules]
        return out


@dataclass(frozen=True)
class AlertmanagerDocument:
    """Alertmanager config as held by Cortex: opaque document + template files."""
    alertmanager_config: str
    template_files: Dict[str, str] = field(default_factory=dict)


# ---------- YAML helpers ----------

def _mapping_items(node: yaml.Node, what: str) -> List[Tuple[str, yaml.Node]]:
    if not isinstance(node, yaml.MappingNode):
        raise TranslationError(f"{what} must be a mapping")
    items: List[Tuple[str, yaml.Node]] = []
    for k, v in node.value:
        if not isinstance(k, yaml.ScalarNode):
            raise TranslationError(f"{what} has a non-scalar key")
        items.append((k.value, v))
    return items


def _string_map(node: yaml.Node, what: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for k, v in _mapping_items(node, what):
        out[k] = ScalarToken.from_node(v).value
    return out


def _rule_from_node(node: yaml.Node) -> NativeRule:
    fields = dict(_mapping_items(node, "rule"))
    record = ScalarToken.from_node(fields["record"]) if "record" in fields else None
    alert = ScalarToken.from_node(fields["alert"]) if "alert" in fields else None
    expr = ScalarToken.from_node(fields["expr"]) if "expr" in fields else ScalarToken("")
    for_ms = parse_duration(ScalarToken.from_node(fields["for"]).value) if "for" in fields else 0
    labels = _string_map(fields["labels"], "labels") if "labels" in fields else None
    annotations = _string_map(fields["annotations"], "annotations") if "annotations" in fields else None
    return NativeRule(
        expr=expr,
        record=record,
        alert=alert,
        for_ms=for_ms,
        labels=labels or None,
        annotations=annotations or None,
    )


# ---------- Public codec ----------

def rule_group_to_yaml(group: NativeRuleGroup) -> str:
    return yaml.safe_dump(group.to_dict(), sort_keys=False, default_flow_style=False, allow_unicode=True)


def rule_group_from_yaml(text: str) -> NativeRuleGroup:
    """Decode a ruler response body. Raises TranslationError on malformed input."""
    try:
        root = yaml.compose(text, Loader=yaml.SafeLoader)
    except yaml.YAMLError as exc:
        raise TranslationError(f"cannot parse rule group: {exc}") from exc
    if root is None:
        raise TranslationError("empty rule group document")

    fields = dict(_mapping_items(root, "rule group"))
    name = ScalarToken.from_node(fields["name"]).value if "name" in fields else ""
    interval_ms = 0
    if "interval" in fields:
        interval_ms = parse_duration(ScalarToken.from_node(fields["interval"]).value)

    rules: List[NativeRule] = []
    rules_node = fields.get("rules")
    if rules_node is not None:
        if not isinstance(rules_node, yaml.SequenceNode):
            raise TranslationError("rules must be a list")
        rules = [_rule_from_node(n) for n in rules_node.value]
    return NativeRuleGroup(name=name, interval_ms=interval_ms, rules=tuple(rules))


def alertmanager_to_yaml(doc: AlertmanagerDocument) -> str:
    body: Dict[str, Any] = {}
    if doc.template_files:
        body["template_files"] = dict(doc.template_files)
    body["alertmanager_config"] = doc.alertmanager_config
    return yaml.safe_dump(body, sort_keys=False, default_flow_style=False, allow_unicode=True)


def alertmanager_from_yaml(text: str) -> AlertmanagerDocument:
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as exc:
        raise TranslationError(f"cannot parse alertmanager config: {exc}") from exc
    if not isinstance(data, dict):
        raise TranslationError("alertmanager config response must be a mapping")
    templates = data.get("template_files") or {}
    if not isinstance(templates, dict):
        raise TranslationError("template_files must be a mapping")
    return AlertmanagerDocument(
        alertmanager_config=str(data.get("alertmanager_config") or ""),
        template_files={str(k): str(v) for k, v in templates.items()},
    )
