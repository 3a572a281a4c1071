from typing import Dict, List, Optional, Tuple

import pytest

from cortexsync.core.cortex_client import Failed, Found, NotFound
from cortexsync.core.errors import RemoteCallError
from cortexsync.core.rulefmt import AlertmanagerDocument, NativeRuleGroup


class FakeCortex:
    """In-memory Cortex tenant implementing the client surface used by the controllers."""

    def __init__(self) -> None:
        self.groups: Dict[Tuple[str, str], NativeRuleGroup] = {}
        self.alertmanager: Optional[AlertmanagerDocument] = None
        self.calls: List[str] = []
        self.fail_fetch: Optional[str] = None
        self.fail_put: Optional[str] = None

    # rule groups
    def fetch_rule_group(self, namespace, group):
        self.calls.append(f"fetch_rule_group {namespace}/{group}")
        if self.fail_fetch:
            return Failed(self.fail_fetch, 500)
        found = self.groups.get((namespace, group))
        return Found(found) if found is not None else NotFound()

    def put_rule_group(self, namespace, group):
        self.calls.append(f"put_rule_group {namespace}/{group.name}")
        if self.fail_put:
            raise RemoteCallError(f"POST /api/v1/rules/{namespace}", self.fail_put, 500)
        self.groups[(namespace, group.name)] = group

    def delete_rule_group(self, namespace, group):
        self.calls.append(f"delete_rule_group {namespace}/{group}")
        return self.groups.pop((namespace, group), None) is not None

    # alertmanager
    def fetch_alertmanager_config(self):
        self.calls.append("fetch_alertmanager_config")
        if self.fail_fetch:
            return Failed(self.fail_fetch, 500)
        return Found(self.alertmanager) if self.alertmanager else NotFound()

    def put_alertmanager_config(self, doc):
        self.calls.append("put_alertmanager_config")
        if self.fail_put:
            raise RemoteCallError("POST /api/v1/alerts", self.fail_put, 500)
        self.alertmanager = doc

    def delete_alertmanager_config(self):
        self.calls.append("delete_alertmanager_config")
        existed = self.alertmanager is not None
        self.alertmanager = None
        return existed

    def mutations(self) -> List[str]:
        return [c for c in self.calls if not c.startswith("fetch_")]


@pytest.fixture()
def cortex():
    return FakeCortex()
