import json
import threading

import pytest
import requests
from unittest.mock import MagicMock

from pvemon.cluster.provider import (
    NodeConfig,
    ProxmoxAPIError,
    ProxmoxClient,
    load_node_configs,
    parse_nodes_from_env
)

from conftest import FakeNodeSource, make_status, timeout_error


def make_response(data=None, status_code=200, reason="OK"):
    response = MagicMock()
    response.ok = status_code < 400
    response.status_code = status_code
    response.reason = reason
    response.json.return_value = {"data": data}
    return response


def make_node(name="pve1", **kwargs):
    return NodeConfig(name=name, url=f"https://{name}:8006", token_id="root@pam!mon",
                      token_secret="secret", **kwargs)


STATUS_PAYLOAD = {
    "cpu": 0.253,
    "memory": {"used": 4096, "total": 16384, "free": 12288},
    "rootfs": {"used": 50, "total": 200, "free": 150},
    "uptime": 86400,
    "loadavg": ["0.50", "0.40", "0.30"],
}


class TestNodeConfig:

    def test_from_dict_accepts_camel_case(self):
        node = NodeConfig.from_dict({
            "name": "pve2",
            "url": "https://pve2:8006/",
            "tokenId": "user@pve!tok",
            "tokenSecret": "s3cret",
            "cfAccessEnabled": True,
            "cfAccessClientId": "cid",
            "cfAccessClientSecret": "csecret",
        })
        assert node.name == "pve2"
        assert node.url == "https://pve2:8006"
        assert node.token_id == "user@pve!tok"
        assert node.token_secret == "s3cret"
        assert node.cf_access_enabled is True
        assert node.cf_access_client_id == "cid"
        assert node.verify_ssl is False


class TestParseNodesFromEnv:

    def test_parses_json_node_list(self):
        env = {"PROXMOX_NODES": json.dumps([
            {"name": "a", "url": "https://a", "tokenId": "t", "tokenSecret": "s"},
            {"name": "b", "url": "https://b", "tokenId": "t", "tokenSecret": "s"},
        ])}
        nodes = parse_nodes_from_env(env)
        assert [n.name for n in nodes] == ["a", "b"]

    def test_invalid_json_falls_back_to_single_node(self, caplog):
        env = {
            "PROXMOX_NODES": "{not json",
            "PROXMOX_URL": "https://pve:8006",
            "PROXMOX_TOKEN_ID": "root@pam!mon",
            "PROXMOX_TOKEN_SECRET": "secret",
            "CF_ACCESS_ENABLED": "true",
            "CF_ACCESS_CLIENT_ID": "cid",
            "CF_ACCESS_CLIENT_SECRET": "csecret",
        }
        nodes = parse_nodes_from_env(env)
        assert len(nodes) == 1
        assert nodes[0].name == "pve"
        assert nodes[0].cf_access_enabled is True
        assert "Failed to parse PROXMOX_NODES" in caplog.text

    def test_incomplete_single_node_settings_yield_no_nodes(self):
        assert parse_nodes_from_env({"PROXMOX_URL": "https://pve:8006"}) == []

    def test_settings_nodes_used_when_env_is_empty(self):
        nodes = load_node_configs([{"name": "lab", "url": "https://lab", "token_id": "t", "token_secret": "s"}],
                                  environ={})
        assert [n.name for n in nodes] == ["lab"]


class TestProxmoxClient:

    def test_get_node_status_scales_cpu_and_uses_rootfs(self):
        session = MagicMock()
        session.request.return_value = make_response(STATUS_PAYLOAD)
        client = ProxmoxClient([make_node()], session=session)

        status = client.get_node_status("pve1")

        assert status.node == "pve1"
        assert status.cpu == pytest.approx(25.3)
        assert status.memory_percent == pytest.approx(25.0)
        assert status.disk_percent == pytest.approx(25.0)
        assert status.loadavg == [0.5, 0.4, 0.3]

        args, kwargs = session.request.call_args
        assert args == ("GET", "https://pve1:8006/api2/json/nodes/pve1/status")
        assert kwargs["headers"]["Authorization"] == "PVEAPIToken=root@pam!mon=secret"
        assert kwargs["timeout"] == 15
        assert kwargs["verify"] is False

    def test_cloudflare_access_headers_are_sent_when_enabled(self):
        session = MagicMock()
        session.request.return_value = make_response(STATUS_PAYLOAD)
        node = make_node(cf_access_enabled=True, cf_access_client_id="cid",
                         cf_access_client_secret="csecret")
        client = ProxmoxClient([node], session=session)

        client.get_node_status("pve1")

        headers = session.request.call_args[1]["headers"]
        assert headers["CF-Access-Client-Id"] == "cid"
        assert headers["CF-Access-Client-Secret"] == "csecret"

    def test_timeout_raises_api_error(self):
        session = MagicMock()
        session.request.side_effect = requests.Timeout()
        client = ProxmoxClient([make_node()], session=session)

        with pytest.raises(ProxmoxAPIError) as exc_info:
            client.get_node_status("pve1")

        assert str(exc_info.value) == "Timeout connecting to pve1 (15s)"
        assert exc_info.value.node_name == "pve1"

    def test_http_error_raises_api_error(self):
        session = MagicMock()
        session.request.return_value = make_response(status_code=401, reason="Unauthorized")
        client = ProxmoxClient([make_node()], session=session)

        with pytest.raises(ProxmoxAPIError, match=r"Proxmox API error \(pve1\): 401 Unauthorized"):
            client.get_node_status("pve1")

    def test_get_node_is_case_insensitive_and_defaults_to_first(self):
        client = ProxmoxClient([make_node("pve1"), make_node("pve2")], session=MagicMock())
        assert client.get_node("PVE2").name == "pve2"
        assert client.get_node().name == "pve1"
        assert client.get_node("missing") is None

    def test_unknown_node_raises(self):
        client = ProxmoxClient([make_node()], session=MagicMock())
        with pytest.raises(ProxmoxAPIError, match="not found"):
            client.get_node_status("nope")

    def test_list_workloads_isolates_failing_node(self):
        def fake_request(method, url, **kwargs):
            if "/nodes/bad/" in url:
                raise requests.ConnectionError("refused")
            if url.endswith("/qemu"):
                return make_response([{"vmid": 200, "name": "web", "status": "running"},
                                      {"vmid": 100, "name": "db", "status": "stopped"}])
            return make_response([{"vmid": 150, "name": "ct", "status": "running"}])

        session = MagicMock()
        session.request.side_effect = fake_request
        client = ProxmoxClient([make_node("good"), make_node("bad")], session=session)

        workloads, errors = client.list_workloads()

        assert [w.vmid for w in workloads] == [100, 150, 200]
        assert {w.type for w in workloads} == {"qemu", "lxc"}
        assert all(w.node == "good" for w in workloads)
        assert list(errors) == ["bad"]
        assert client.get_last_node_errors() == errors


class TestGetAllNodesStatus:

    def test_partial_failure_keeps_healthy_nodes(self, caplog):
        source = FakeNodeSource({
            "pve1": make_status("pve1"),
            "pve2": timeout_error("pve2"),
            "pve3": make_status("pve3"),
        })

        statuses, errors = source.get_all_nodes_status()

        assert sorted(s.node for s in statuses) == ["pve1", "pve3"]
        assert errors == {"pve2": "Timeout connecting to pve2 (15s)"}
        assert "pve2" in caplog.text

    def test_no_nodes(self):
        assert FakeNodeSource({}).get_all_nodes_status() == ([], {})

    def test_nodes_are_queried_concurrently(self):
        barrier = threading.Barrier(2, timeout=5)

        class BlockingSource(FakeNodeSource):
            def get_node_status(self, node_name=None):
                barrier.wait()
                return super().get_node_status(node_name)

        source = BlockingSource({"pve1": make_status("pve1"), "pve2": make_status("pve2")})

        statuses, errors = source.get_all_nodes_status()

        assert errors == {}
        assert sorted(s.node for s in statuses) == ["pve1", "pve2"]
