"""
Up-to-date predicates: does the observed remote state satisfy the desired spec?

Rule groups compare the evaluation interval and the record/alert names only.
Expression, for, labels and annotations are NOT compared, so a change limited
to those fields is reported as up to date. Observed rules are matched by type:
the last record rule and the last alert rule seen stand in for all of them,
which only gives a meaningful answer for groups holding at most one of each.
"""

from __future__ import annotations

from typing import Mapping, Optional

from .errors import TranslationError
from .resources import AlertmanagerConfigurationSpec, RuleGroupSpec
from .rulefmt import AlertmanagerDocument, NativeRule, NativeRuleGroup
from .translator import translate_interval, translate_rule


def _same_templates(desired: Mapping[str, str], observed: Mapping[str, str]) -> bool:
    if len(desired) != len(observed):
        return False
    for k, v in observed.items():
        if k not in desired or desired[k] != v:
            return False
    return True


def alertmanager_up_to_date(
    spec: AlertmanagerConfigurationSpec,
    observed: Optional[AlertmanagerDocument],
) -> bool:
    if observed is None or not observed.alertmanager_config:
        return False
    if spec.alertmanager_config != observed.alertmanager_config:
        return False
    return _same_templates(spec.template_files, observed.template_files)


def _value(token) -> str:
    return token.value if token is not None else ""


def rule_group_up_to_date(spec: RuleGroupSpec, observed: Optional[NativeRuleGroup]) -> bool:
    if observed is None:
        return False

    try:
        interval_ms = translate_interval(spec.interval)
    except TranslationError:
        return False
    if interval_ms != observed.interval_ms:
        return False

    record_rule: Optional[NativeRule] = None
    alert_rule: Optional[NativeRule] = None
    for rule in observed.rules:
        if rule.record is not None and not rule.record.is_zero():
            record_rule = rule
        if rule.alert is not None and not rule.alert.is_zero():
            alert_rule = rule

    for desired in spec.rules:
        try:
            rn = translate_rule(desired)
        except TranslationError:
            return False

        if rn.alert is not None and not rn.alert.is_zero():
            if rn.alert.value != _value(alert_rule.alert if alert_rule else None):
                return False
        if rn.record is not None and not rn.record.is_zero():
            if rn.record.value != _value(record_rule.record if record_rule else None):
                return False

    return True
