import json
import textwrap
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import unquote, urlparse

import pytest
import yaml

from cortexsync.cli import main


class _Tenant(BaseHTTPRequestHandler):
    """Stateful fake of one Cortex tenant (ruler + alertmanager APIs)."""

    groups = {}
    alerts = ""
    calls = {"GET": 0, "POST": 0, "DELETE": 0}
    tenants = set()

    protocol_version = "HTTP/1.1"

    def _send(self, status: int, text: str = "") -> None:
        raw = text.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/yaml")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def _parts(self):
        _Tenant.tenants.add(self.headers.get("X-Scope-OrgID", ""))
        return unquote(urlparse(self.path).path).strip("/").split("/")

    def do_GET(self):  # noqa: N802
        _Tenant.calls["GET"] += 1
        parts = self._parts()
        if parts[:3] == ["api", "v1", "rules"] and len(parts) == 5:
            body = _Tenant.groups.get((parts[3], parts[4]))
            self._send(200, body) if body else self._send(404, "group does not exist")
        elif parts == ["api", "v1", "alerts"]:
            self._send(200, _Tenant.alerts) if _Tenant.alerts else self._send(404, "not configured")
        else:
            self._send(404)

    def do_POST(self):  # noqa: N802
        _Tenant.calls["POST"] += 1
        parts = self._parts()
        length = int(self.headers.get("Content-Length", "0"))
        body = self.rfile.read(length).decode("utf-8") if length else ""
        if parts[:3] == ["api", "v1", "rules"] and len(parts) == 4:
            name = yaml.safe_load(body)["name"]
            _Tenant.groups[(parts[3], name)] = body
            self._send(202)
        elif parts == ["api", "v1", "alerts"]:
            _Tenant.alerts = body
            self._send(201)
        else:
            self._send(404)

    def do_DELETE(self):  # noqa: N802
        _Tenant.calls["DELETE"] += 1
        parts = self._parts()
        if parts[:3] == ["api", "v1", "rules"] and len(parts) == 5:
            existed = _Tenant.groups.pop((parts[3], parts[4]), None)
            self._send(202) if existed else self._send(404)
        elif parts == ["api", "v1", "alerts"]:
            _Tenant.alerts = ""
            self._send(200)
        else:
            self._send(404)

    def log_message(self, fmt, *args):
        return


@pytest.fixture()
def cortex_url():
    _Tenant.groups = {}
    _Tenant.alerts = ""
    _Tenant.calls = {"GET": 0, "POST": 0, "DELETE": 0}
    _Tenant.tenants = set()
    server = ThreadingHTTPServer(("127.0.0.1", 0), _Tenant)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://{server.server_address[0]}:{server.server_address[1]}"
    server.shutdown()
    thread.join(timeout=1.0)


def _workspace(tmp_path, url, for_="5m"):
    (tmp_path / "cortexsync.yml").write_text(textwrap.dedent(f"""
        http:
          retries: 0
          timeout_sec: 2
        logging:
          console_level: "ERROR"
        provider_configs:
          default:
            address: "{url}"
            tenant_id: "team-a"
    """), encoding="utf-8")
    manifests = tmp_path / "manifests"
    manifests.mkdir(exist_ok=True)
    (manifests / "rules.yml").write_text(textwrap.dedent(f"""
        kind: RuleGroup
        metadata:
          name: node
        spec:
          forProvider:
            namespace: infra
            interval: 1m
            rules:
              - alert: NodeDown
                expr: up == 0
                for: {for_}
    """), encoding="utf-8")
    (manifests / "alertmanager.yml").write_text(textwrap.dedent("""
        kind: AlertManagerConfiguration
        metadata:
          name: tenant-am
        spec:
          forProvider:
            alertmanager_config: |
              route:
                receiver: x
              receivers:
                - name: x
    """), encoding="utf-8")
    return [
        "--config", str(tmp_path / "cortexsync.yml"),
        "-f", str(manifests),
        "--logs-dir", str(tmp_path / "logs"),
    ]


def test_reconcile_creates_then_noops(tmp_path, monkeypatch, capsys, cortex_url):
    monkeypatch.chdir(tmp_path)
    args = _workspace(tmp_path, cortex_url)

    rc = main(["reconcile", *args])
    out = capsys.readouterr().out
    assert rc == 0
    assert "CREATED=2 | UPDATED=0 | NOOP=0 | DELETED=0 | ERROR=0" in out
    assert ("infra", "node") in _Tenant.groups
    assert "receiver: x" in yaml.safe_load(_Tenant.alerts)["alertmanager_config"]
    assert _Tenant.tenants == {"team-a"}

    posts = _Tenant.calls["POST"]
    rc = main(["reconcile", *args])
    out = capsys.readouterr().out
    assert rc == 0
    assert "CREATED=0 | UPDATED=0 | NOOP=2 | DELETED=0 | ERROR=0" in out
    assert _Tenant.calls["POST"] == posts


def test_reconcile_json_and_status_file(tmp_path, monkeypatch, capsys, cortex_url):
    monkeypatch.chdir(tmp_path)
    args = _workspace(tmp_path, cortex_url)
    status_file = tmp_path / "status.json"

    rc = main(["reconcile", *args, "--format", "json", "--status-file", str(status_file)])
    assert rc == 0
    out = capsys.readouterr().out
    rows = json.loads(out[: out.rindex("]") + 1])
    assert {r["result"] for r in rows} == {"CREATED"}

    status = json.loads(status_file.read_text(encoding="utf-8"))
    assert status["RuleGroup/node"]["atProvider"] == {"namespace": "infra"}
    assert "error" not in status["AlertManagerConfiguration/tenant-am"]


def test_invalid_rule_is_a_cycle_error(tmp_path, monkeypatch, capsys, cortex_url):
    monkeypatch.chdir(tmp_path)
    args = _workspace(tmp_path, cortex_url, for_="5mins")

    rc = main(["reconcile", *args])
    out = capsys.readouterr().out
    assert rc == 4
    assert "CREATED=1 | UPDATED=0 | NOOP=0 | DELETED=0 | ERROR=1" in out
    assert ("infra", "node") not in _Tenant.groups


def test_delete_removes_objects(tmp_path, monkeypatch, capsys, cortex_url):
    monkeypatch.chdir(tmp_path)
    args = _workspace(tmp_path, cortex_url)
    assert main(["reconcile", *args]) == 0

    rc = main(["delete", *args])
    out = capsys.readouterr().out
    assert rc == 0
    assert "DELETED=2" in out
    assert _Tenant.groups == {}
    assert _Tenant.alerts == ""

    # deleting again is still a success
    assert main(["delete", *args]) == 0


def test_missing_config_file(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    rc = main(["reconcile", "--config", str(tmp_path / "nope.yml"), "-f", str(tmp_path)])
    assert rc == 2
    assert "Configuration error" in capsys.readouterr().err


def test_unknown_provider_config_is_a_cycle_error(tmp_path, monkeypatch, capsys, cortex_url):
    monkeypatch.chdir(tmp_path)
    args = _workspace(tmp_path, cortex_url)
    rules = tmp_path / "manifests" / "rules.yml"
    rules.write_text(rules.read_text(encoding="utf-8").replace(
        "spec:\n", "spec:\n  providerConfigRef:\n    name: elsewhere\n"
    ), encoding="utf-8")

    rc = main(["reconcile", *args])
    assert rc == 4
    assert "ERROR=1" in capsys.readouterr().out


def test_missing_manifest(tmp_path, monkeypatch, capsys, cortex_url):
    monkeypatch.chdir(tmp_path)
    args = _workspace(tmp_path, cortex_url)
    rc = main(["reconcile", *args, "-f", str(tmp_path / "missing.yml")])
    assert rc == 3


def test_invalid_manifest(tmp_path, monkeypatch, capsys, cortex_url):
    monkeypatch.chdir(tmp_path)
    args = _workspace(tmp_path, cortex_url)
    (tmp_path / "manifests" / "broken.yml").write_text(
        "kind: RuleGroup\nmetadata:\n  name: x\nspec:\n  forProvider:\n    rules: []\n", encoding="utf-8"
    )
    rc = main(["reconcile", *args])
    assert rc == 3
    assert "Manifest error" in capsys.readouterr().err


def test_non_mapping_metadata_is_a_manifest_error(tmp_path, monkeypatch, capsys, cortex_url):
    monkeypatch.chdir(tmp_path)
    args = _workspace(tmp_path, cortex_url)
    (tmp_path / "manifests" / "broken.yml").write_text(
        "kind: RuleGroup\nmetadata: just-a-name\n", encoding="utf-8"
    )
    rc = main(["reconcile", *args])
    assert rc == 3
    assert "metadata must be a mapping" in capsys.readouterr().err
