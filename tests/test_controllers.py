import pytest

from cortexsync.core.controllers import (
    AlertmanagerConfigurationController,
    RuleGroupController,
)
from cortexsync.core.errors import RemoteCallError, TranslationError
from cortexsync.core.resources import (
    KIND_ALERTMANAGER_CONFIGURATION,
    KIND_RULE_GROUP,
    AlertmanagerConfigurationSpec,
    ManagedResource,
    RuleGroupSpec,
    RuleSpec,
)

AM_DOC = "route:\n  receiver: x\n"


def _rule_group(namespace="infra", name="node", external_name="", **kw):
    spec = RuleGroupSpec(
        namespace=namespace,
        rules=(RuleSpec(expr="up == 0", alert="NodeDown", for_="5m"),),
        **kw,
    )
    return ManagedResource(kind=KIND_RULE_GROUP, name=name, spec=spec, external_name=external_name)


def _am(doc=AM_DOC, templates=None):
    spec = AlertmanagerConfigurationSpec(alertmanager_config=doc, template_files=templates or {})
    return ManagedResource(kind=KIND_ALERTMANAGER_CONFIGURATION, name="tenant-am", spec=spec)


def test_rule_group_observe_missing(cortex):
    res = _rule_group()
    obs = RuleGroupController(cortex).observe(res)
    assert obs.resource_exists is False
    assert obs.resource_up_to_date is False
    assert not res.status.is_available()


def test_rule_group_create_then_observe_up_to_date(cortex):
    ctrl = RuleGroupController(cortex)
    res = _rule_group(interval="1m")
    ctrl.create(res)

    stored = cortex.groups[("infra", "node")]
    assert stored.interval_ms == 60_000
    assert stored.rules[0].alert.value == "NodeDown"
    assert res.status.at_provider["namespace"] == "infra"

    obs = ctrl.observe(res)
    assert obs.resource_exists and obs.resource_up_to_date
    assert res.status.is_available()


def test_rule_group_uses_external_name(cortex):
    res = _rule_group(name="k8s-object", external_name="remote-group")
    ctrl = RuleGroupController(cortex)
    ctrl.create(res)
    assert ("infra", "remote-group") in cortex.groups
    ctrl.observe(res)
    assert cortex.calls[-1] == "fetch_rule_group infra/remote-group"


def test_rule_group_translation_error_makes_no_remote_call(cortex):
    spec = RuleGroupSpec(namespace="infra", rules=(RuleSpec(expr="up == 0", alert="Down", for_="5mins"),))
    res = ManagedResource(kind=KIND_RULE_GROUP, name="bad", spec=spec)
    with pytest.raises(TranslationError):
        RuleGroupController(cortex).create(res)
    assert cortex.mutations() == []


def test_rule_group_fetch_failure_is_an_error(cortex):
    cortex.fail_fetch = "boom"
    with pytest.raises(RemoteCallError) as ei:
        RuleGroupController(cortex).observe(_rule_group())
    assert ei.value.status == 500
    assert "boom" in str(ei.value)


def test_rule_group_namespace_is_write_once(cortex):
    ctrl = RuleGroupController(cortex)
    res = _rule_group(namespace="infra")
    ctrl.create(res)

    moved = _rule_group(namespace="platform")
    moved.status = res.status
    with pytest.raises(TranslationError, match="immutable"):
        ctrl.observe(moved)
    with pytest.raises(TranslationError, match="immutable"):
        ctrl.update(moved)
    assert ("platform", "node") not in cortex.groups


def test_rule_group_delete_targets_applied_namespace(cortex):
    ctrl = RuleGroupController(cortex)
    res = _rule_group(namespace="infra")
    ctrl.create(res)

    moved = _rule_group(namespace="platform")
    moved.status = res.status
    assert ctrl.delete(moved) is True
    assert cortex.calls[-1] == "delete_rule_group infra/node"
    assert cortex.groups == {}


def test_rule_group_delete_is_idempotent(cortex):
    ctrl = RuleGroupController(cortex)
    res = _rule_group()
    ctrl.create(res)
    assert ctrl.delete(res) is True
    assert ctrl.delete(res) is False


def test_alertmanager_create_and_observe(cortex):
    ctrl = AlertmanagerConfigurationController(cortex)
    res = _am(templates={"t.tmpl": "T"})
    assert ctrl.observe(res).resource_exists is False

    ctrl.create(res)
    assert cortex.alertmanager.alertmanager_config == AM_DOC
    assert cortex.alertmanager.template_files == {"t.tmpl": "T"}

    obs = ctrl.observe(res)
    assert obs.resource_exists and obs.resource_up_to_date
    assert res.status.is_available()


def test_alertmanager_drift_detected(cortex):
    ctrl = AlertmanagerConfigurationController(cortex)
    ctrl.create(_am())
    obs = ctrl.observe(_am(doc=AM_DOC + "receivers:\n  - name: x\n"))
    assert obs.resource_exists is True
    assert obs.resource_up_to_date is False


def test_alertmanager_put_failure_propagates(cortex):
    cortex.fail_put = "invalid config"
    with pytest.raises(RemoteCallError, match="invalid config"):
        AlertmanagerConfigurationController(cortex).update(_am())


def test_alertmanager_delete_idempotent(cortex):
    ctrl = AlertmanagerConfigurationController(cortex)
    ctrl.create(_am())
    assert ctrl.delete(_am()) is True
    assert ctrl.delete(_am()) is False


def test_rule_group_delete_releases_the_namespace(cortex):
    ctrl = RuleGroupController(cortex)
    res = _rule_group(namespace="infra")
    ctrl.create(res)
    ctrl.observe(res)
    assert res.status.is_available()

    ctrl.delete(res)
    assert "namespace" not in res.status.at_provider
    assert not res.status.is_available()

    moved = _rule_group(namespace="platform")
    moved.status = res.status
    assert ctrl.observe(moved).resource_exists is False
    ctrl.create(moved)
    assert ("platform", "node") in cortex.groups


def test_rule_group_create_twice_leaves_the_same_state(cortex):
    ctrl = RuleGroupController(cortex)
    res = _rule_group(interval="1m")
    ctrl.create(res)
    once = dict(cortex.groups)

    ctrl.create(res)
    assert cortex.groups == once
    assert cortex.mutations() == ["put_rule_group infra/node", "put_rule_group infra/node"]


def test_alertmanager_create_twice_leaves_the_same_state(cortex):
    ctrl = AlertmanagerConfigurationController(cortex)
    res = _am(templates={"t.tmpl": "T"})
    ctrl.create(res)
    once = cortex.alertmanager

    ctrl.create(res)
    assert cortex.alertmanager == once


def test_alertmanager_delete_clears_availability(cortex):
    ctrl = AlertmanagerConfigurationController(cortex)
    res = _am()
    ctrl.create(res)
    ctrl.observe(res)
    assert res.status.is_available()
    ctrl.delete(res)
    assert not res.status.is_available()
