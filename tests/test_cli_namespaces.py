from __future__ import annotations

import json
import stat

import httpx
import pytest

from nsprovisioner.cli import namespaces

BASE_URL = "http://provisioner.test"


def _mock_client(monkeypatch, handler) -> None:
    real_client = httpx.AsyncClient

    def factory(**kwargs):
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(namespaces.httpx, "AsyncClient", factory)


@pytest.mark.asyncio
async def test_create_namespace_sends_bearer_token(monkeypatch):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, text="apiVersion: v1\n", headers={"X-Namespace": "np-1"})

    _mock_client(monkeypatch, handler)

    name, kubeconfig = await namespaces.create_namespace(BASE_URL + "/", "s3cret", 5.0)

    assert (name, kubeconfig) == ("np-1", "apiVersion: v1\n")
    (request,) = seen
    assert request.method == "POST"
    assert str(request.url) == f"{BASE_URL}/api/v1/namespace"
    assert request.headers["authorization"] == "Bearer s3cret"


@pytest.mark.asyncio
async def test_delete_namespace_without_token(monkeypatch):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"namespace": "np-1", "status": "deleted"})

    _mock_client(monkeypatch, handler)

    payload = await namespaces.delete_namespace(BASE_URL, None, "np-1", 5.0)

    assert payload == {"namespace": "np-1", "status": "deleted"}
    assert seen[0].method == "DELETE"
    assert seen[0].url.path == "/api/v1/namespace/np-1"
    assert "authorization" not in seen[0].headers


@pytest.mark.asyncio
async def test_run_create_writes_private_kubeconfig(monkeypatch, tmp_path, capsys):
    async def fake_create(base_url: str, token, timeout: float):  # noqa: ANN001
        assert base_url == BASE_URL
        assert token == "s3cret"
        return "np-1", "kind: Config\n"

    monkeypatch.setattr(namespaces, "create_namespace", fake_create)
    target = tmp_path / "kubeconfig"

    code = await namespaces.run(
        ["--base-url", BASE_URL, "--token", "s3cret", "create", "--output", str(target)]
    )

    assert code == 0
    assert target.read_text(encoding="utf-8") == "kind: Config\n"
    assert stat.S_IMODE(target.stat().st_mode) == 0o600
    assert "np-1" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_run_create_prints_kubeconfig(monkeypatch, capsys):
    async def fake_create(base_url: str, token, timeout: float):  # noqa: ANN001
        return "np-1", "kind: Config\n"

    monkeypatch.setattr(namespaces, "create_namespace", fake_create)

    code = await namespaces.run(["--base-url", BASE_URL, "create"])

    assert code == 0
    assert capsys.readouterr().out == "kind: Config\n"


@pytest.mark.asyncio
async def test_run_delete_json(monkeypatch, capsys):
    async def fake_delete(base_url: str, token, name: str, timeout: float):  # noqa: ANN001
        assert name == "np-1"
        return {"namespace": "np-1", "status": "already_absent"}

    monkeypatch.setattr(namespaces, "delete_namespace", fake_delete)

    code = await namespaces.run(["--base-url", BASE_URL, "delete", "np-1", "--json"])

    assert code == 0
    assert json.loads(capsys.readouterr().out)["status"] == "already_absent"


@pytest.mark.asyncio
async def test_run_reports_http_errors(monkeypatch, capsys):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"detail": "invalid token"})

    _mock_client(monkeypatch, handler)

    code = await namespaces.run(["--base-url", BASE_URL, "--token", "bad", "delete", "np-1"])

    assert code == 1
    assert "401" in capsys.readouterr().err


def test_base_url_defaults_from_environment(monkeypatch):
    monkeypatch.setenv("NSP_URL", BASE_URL)
    monkeypatch.setenv("NSP_TOKEN", "from-env")

    args = namespaces.parse_args(["delete", "np-1"])

    assert args.base_url == BASE_URL
    assert args.token == "from-env"
    assert args.command == "delete"
