"""
Per-kind resource controllers.

Each controller implements the same contract for one managed object:

  observe(res) -> Observation        fetch + classify + compare
  create(res)  -> None               translate + upsert
  update(res)  -> None               same code path as create
  delete(res)  -> bool               False when the object was already gone

Controllers never retry and never perform more than one remote mutation per
call. Errors propagate to the reconciler.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol, Type, Union

from .comparator import alertmanager_up_to_date, rule_group_up_to_date
from .cortex_client import FetchResult, Failed, Found, is_not_found
from .errors import RemoteCallError, TranslationError
from .resources import (
    AlertmanagerConfigurationSpec,
    ManagedResource,
    RuleGroupSpec,
)
from .rulefmt import AlertmanagerDocument, NativeRuleGroup
from .translator import translate_alertmanager, translate_rule_group


@dataclass(frozen=True)
class Observation:
    resource_exists: bool = False
    resource_up_to_date: bool = False


class RuleGroupClient(Protocol):
    def fetch_rule_group(self, namespace: str, group: str) -> FetchResult[NativeRuleGroup]: ...
    def put_rule_group(self, namespace: str, group: NativeRuleGroup) -> None: ...
    def delete_rule_group(self, namespace: str, group: str) -> bool: ...


class AlertmanagerClient(Protocol):
    def fetch_alertmanager_config(self) -> FetchResult[AlertmanagerDocument]: ...
    def put_alertmanager_config(self, doc: AlertmanagerDocument) -> None: ...
    def delete_alertmanager_config(self) -> bool: ...


class ResourceController:
    """Base class; subclasses bind one spec type and one remote API."""

    spec_type: Type = object

    def __init__(self, client, logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None) -> None:
        self.client = client
        self.log = logger or logging.getLogger(f"cs.controller.{type(self).__name__}")

    def observe(self, res: ManagedResource) -> Observation:
        raise NotImplementedError

    def create(self, res: ManagedResource) -> None:
        self._apply(res)

    def update(self, res: ManagedResource) -> None:
        self._apply(res)

    def delete(self, res: ManagedResource) -> bool:
        raise NotImplementedError

    def _apply(self, res: ManagedResource) -> None:
        raise NotImplementedError

    def _unwrap(self, result: FetchResult, what: str):
        """Return the fetched value, None when absent, raise on failure."""
        if is_not_found(result):
            return None
        if isinstance(result, Failed):
            raise RemoteCallError(f"fetch {what}", result.detail, result.status)
        if isinstance(result, Found):
            return result.value
        raise RemoteCallError(f"fetch {what}", f"unexpected result {result!r}")


class RuleGroupController(ResourceController):
    spec_type = RuleGroupSpec

    @staticmethod
    def _check_namespace(res: ManagedResource) -> None:
        applied = res.status.at_provider.get("namespace")
        if applied and applied != res.spec.namespace:
            raise TranslationError(
                f"namespace is immutable: group was applied in {applied!r}, spec now says "
                f"{res.spec.namespace!r}; delete and recreate the object instead"
            )

    def observe(self, res: ManagedResource) -> Observation:
        self._check_namespace(res)
        spec: RuleGroupSpec = res.spec
        result = self.client.fetch_rule_group(spec.namespace, res.external_name)
        observed = self._unwrap(result, f"rule group {spec.namespace}/{res.external_name}")
        if observed is None:
            self.log.debug("Rule group %s/%s not found", spec.namespace, res.external_name)
            return Observation(resource_exists=False)

        res.status.set_available()
        up_to_date = rule_group_up_to_date(spec, observed)
        self.log.debug("Rule group %s/%s exists (up_to_date=%s)", spec.namespace, res.external_name, up_to_date)
        return Observation(resource_exists=True, resource_up_to_date=up_to_date)

    def _apply(self, res: ManagedResource) -> None:
        self._check_namespace(res)
        spec: RuleGroupSpec = res.spec
        group = translate_rule_group(res.external_name, spec)
        self.client.put_rule_group(spec.namespace, group)
        res.status.at_provider["namespace"] = spec.namespace
        self.log.info("Applied rule group %s/%s (%d rules)", spec.namespace, group.name, len(group.rules))

    def delete(self, res: ManagedResource) -> bool:
        spec: RuleGroupSpec = res.spec
        namespace = res.status.at_provider.get("namespace") or spec.namespace
        removed = self.client.delete_rule_group(namespace, res.external_name)
        if not removed:
            self.log.info("Rule group %s/%s already absent", namespace, res.external_name)
        # the group may be recreated in another namespace from here on
        res.status.at_provider.pop("namespace", None)
        res.status.clear_available()
        return removed


class AlertmanagerConfigurationController(ResourceController):
    spec_type = AlertmanagerConfigurationSpec

    def observe(self, res: ManagedResource) -> Observation:
        observed = self._unwrap(self.client.fetch_alertmanager_config(), "alertmanager config")
        if observed is None:
            self.log.debug("Alertmanager config not found")
            return Observation(resource_exists=False)

        res.status.set_available()
        return Observation(
            resource_exists=True,
            resource_up_to_date=alertmanager_up_to_date(res.spec, observed),
        )

    def _apply(self, res: ManagedResource) -> None:
        doc = translate_alertmanager(res.spec)
        self.client.put_alertmanager_config(doc)
        self.log.info("Applied alertmanager config (%d template files)", len(doc.template_files))

    def delete(self, res: ManagedResource) -> bool:
        removed = self.client.delete_alertmanager_config()
        if not removed:
            self.log.info("Alertmanager config already absent")
        res.status.clear_available()
        return removed
