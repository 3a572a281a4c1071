"""
Desired spec -> native Cortex shapes.

Lifecycle for a rule group:
  interval -> duration grammar
  each rule -> record/alert exclusivity -> scalar fragments -> for -> labels/annotations

Any malformed field raises TranslationError; nothing is silently defaulted.
"""

from __future__ import annotations

from typing import List, Mapping, Optional

from .duration import parse_duration
from .errors import TranslationError
from .resources import AlertmanagerConfigurationSpec, RuleGroupSpec, RuleSpec
from .rulefmt import AlertmanagerDocument, NativeRule, NativeRuleGroup, ScalarToken


def _non_empty(m: Mapping[str, str]) -> Optional[dict]:
    # Cortex omits empty maps in its responses; never send them
    return dict(m) if m else None


def translate_interval(interval: Optional[str]) -> int:
    if interval is None:
        return 0
    try:
        return parse_duration(interval)
    except TranslationError as exc:
        raise TranslationError(f"interval: {exc}") from exc


def translate_rule(spec: RuleSpec) -> NativeRule:
    if spec.record is not None and spec.alert is not None:
        raise TranslationError("rule sets both 'record' and 'alert'; exactly one is required")
    if spec.record is None and spec.alert is None:
        raise TranslationError("rule sets neither 'record' nor 'alert'; exactly one is required")

    record = ScalarToken.from_text(spec.record, field_name="record") if spec.record is not None else None
    alert = ScalarToken.from_text(spec.alert, field_name="alert") if spec.alert is not None else None
    expr = ScalarToken.from_text(spec.expr, field_name="expr")

    for_ms = 0
    if spec.for_ is not None:
        try:
            for_ms = parse_duration(spec.for_)
        except TranslationError as exc:
            raise TranslationError(f"for: {exc}") from exc

    return NativeRule(
        expr=expr,
        record=record,
        alert=alert,
        for_ms=for_ms,
        labels=_non_empty(spec.labels),
        annotations=_non_empty(spec.annotations),
    )


def translate_rule_group(name: str, spec: RuleGroupSpec) -> NativeRuleGroup:
    interval_ms = translate_interval(spec.interval)
    rules: List[NativeRule] = []
    for idx, rule in enumerate(spec.rules):
        try:
            rules.append(translate_rule(rule))
        except TranslationError as exc:
            raise TranslationError(f"rules[{idx}]: {exc}") from exc
    return NativeRuleGroup(name=name, interval_ms=interval_ms, rules=tuple(rules))


def translate_alertmanager(spec: AlertmanagerConfigurationSpec) -> AlertmanagerDocument:
    """Pass-through: Cortex treats the document and templates as opaque text."""
    return AlertmanagerDocument(
        alertmanager_config=spec.alertmanager_config,
        template_files=dict(spec.template_files),
    )
