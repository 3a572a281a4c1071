"""
Reconciliation cycles over managed objects.

For every object the reconciler selects its controller, observes the remote
state and performs at most one mutation. Failures become ERROR results on
the object's status; they never stop the rest of the pass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from .controllers import Observation
from .errors import CortexSyncError, TranslationError
from .logging_setup import bind_context
from .registry import ControllerRegistry
from .resources import ManagedResource

ClientFactory = Callable[[str], Any]

NOOP = "NOOP"
CREATED = "CREATED"
UPDATED = "UPDATED"
DELETED = "DELETED"
ERROR = "ERROR"

OUTCOMES = (CREATED, UPDATED, NOOP, DELETED, ERROR)


@dataclass(frozen=True)
class CycleResult:
    """Outcome of one reconciliation cycle for one managed object."""
    kind: str
    name: str
    outcome: str
    resource_exists: bool = False
    resource_up_to_date: bool = False
    error: str = ""

    def to_row(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "name": self.name,
            "result": self.outcome,
            "exists": self.resource_exists,
            "up_to_date": self.resource_up_to_date,
            "error": self.error,
        }


class Reconciler:
    """
    Runs reconciliation cycles: observe, then at most one of create/update;
    or, for an object being deleted, delete only.

    A failed cycle leaves conditions untouched and records the error message
    on the status. A successful cycle clears it.
    """

    def __init__(
        self,
        registry: ControllerRegistry,
        clients: ClientFactory,
        *,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self.registry = registry
        self._clients = clients
        self.log = logger or logging.getLogger("cs.reconciler")

    def reconcile(self, res: ManagedResource) -> CycleResult:
        obs = Observation()
        log = bind_context(self.log, kind=res.kind, provider=res.provider_config_ref)
        try:
            controller = self.registry.controller_for(res, self._clients(res.provider_config_ref), logger=log)

            if res.deleting:
                removed = controller.delete(res)
                log.info("%s deleted (was_present=%s)", res.key, removed)
                res.status.error = ""
                return CycleResult(res.kind, res.name, DELETED)

            obs = controller.observe(res)
            if not obs.resource_exists:
                controller.create(res)
                outcome = CREATED
            elif not obs.resource_up_to_date:
                controller.update(res)
                outcome = UPDATED
            else:
                outcome = NOOP
            log.info("%s %s", res.key, outcome.lower())
            res.status.error = ""
            return CycleResult(res.kind, res.name, outcome, obs.resource_exists, obs.resource_up_to_date)

        except TranslationError as exc:
            log.error("%s invalid spec: %s", res.key, exc)
            return self._failed(res, obs, exc)
        except CortexSyncError as exc:
            log.error("%s cycle failed: %s", res.key, exc)
            return self._failed(res, obs, exc)

    def reconcile_all(self, resources: Iterable[ManagedResource]) -> Tuple[List[CycleResult], Dict[str, int]]:
        results: List[CycleResult] = []
        counts: Dict[str, int] = {}
        for res in resources:
            self._append(results, counts, self.reconcile(res))
        return results, counts

    @staticmethod
    def _failed(res: ManagedResource, obs: Observation, exc: Exception) -> CycleResult:
        res.status.error = str(exc)
        return CycleResult(
            res.kind,
            res.name,
            ERROR,
            resource_exists=obs.resource_exists,
            resource_up_to_date=obs.resource_up_to_date,
            error=str(exc),
        )

    @staticmethod
    def _append(results: List[CycleResult], counts: Dict[str, int], res: CycleResult) -> None:
        results.append(res)
        counts[res.outcome] = counts.get(res.outcome, 0) + 1
