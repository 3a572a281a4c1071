"""Controller registry: which controller handles which manifest kind."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Type, Union

from .controllers import (
    AlertmanagerConfigurationController,
    ResourceController,
    RuleGroupController,
)
from .errors import TypeMismatchError
from .resources import (
    KIND_ALERTMANAGER_CONFIGURATION,
    KIND_RULE_GROUP,
    AlertmanagerConfigurationSpec,
    ManagedResource,
    RuleGroupSpec,
)


@dataclass(frozen=True)
class ControllerSpec:
    kind: str                               # manifest kind
    spec_type: Type                         # desired-spec class the controller accepts
    controller_cls: Type[ResourceController]
    help: str = ""


class ControllerRegistry:
    """Explicit kind -> controller mapping, built once at startup and passed around."""

    def __init__(self, specs: Iterable[ControllerSpec] = ()) -> None:
        self._specs: Dict[str, ControllerSpec] = {}
        for s in specs:
            self.register(s)

    def register(self, spec: ControllerSpec) -> None:
        if spec.kind in self._specs:
            raise ValueError(f"kind already registered: {spec.kind}")
        if getattr(spec.controller_cls, "spec_type", None) is not spec.spec_type:
            raise TypeMismatchError(
                f"{spec.controller_cls.__name__} does not handle {spec.spec_type.__name__}"
            )
        self._specs[spec.kind] = spec

    def kinds(self) -> Iterable[str]:
        return tuple(self._specs)

    def get(self, kind: str) -> ControllerSpec:
        try:
            return self._specs[kind]
        except KeyError:
            raise TypeMismatchError(f"no controller registered for kind {kind!r}") from None

    def controller_for(
        self,
        res: ManagedResource,
        client,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> ResourceController:
        """Select and build the controller for *res*; the spec type is checked here, once."""
        spec = self.get(res.kind)
        if not isinstance(res.spec, spec.spec_type):
            raise TypeMismatchError(
                f"{res.key}: spec is {type(res.spec).__name__}, expected {spec.spec_type.__name__}"
            )
        return spec.controller_cls(client, logger=logger)


def default_registry() -> ControllerRegistry:
    return ControllerRegistry([
        ControllerSpec(
            kind=KIND_RULE_GROUP,
            spec_type=RuleGroupSpec,
            controller_cls=RuleGroupController,
            help="Cortex ruler rule group",
        ),
        ControllerSpec(
            kind=KIND_ALERTMANAGER_CONFIGURATION,
            spec_type=AlertmanagerConfigurationSpec,
            controller_cls=AlertmanagerConfigurationController,
            help="Cortex Alertmanager configuration",
        ),
    ])
