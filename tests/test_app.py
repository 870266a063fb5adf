import csv
import io
import json
import threading

import pytest

from app import create_app
from config.loader import ConfigStore
from engine import orchestrator


@pytest.fixture
def client():
    app = create_app()
    app.config["TESTING"] = True
    return app.test_client()


def _run(client, urls, **extra):
    resp = client.post("/run", json={"urls": urls, **extra})
    assert resp.status_code == 202
    run_id = resp.get_json()["run_id"]
    assert orchestrator.wait_for_run(run_id, timeout=10)
    return run_id


def test_health(client):
    assert client.get("/health").get_json() == {"status": "ok"}


def test_index_shows_defaults(client):
    data = client.get("/").get_json()
    assert data["defaults"]["concurrency"] == 20


def test_run_without_urls_is_rejected(client):
    resp = client.post("/run", data={"urls": "  \n# only a comment\n"})
    assert resp.status_code == 400


@pytest.mark.parametrize("extra", [
    {"concurrency": "0"},
    {"timeout_sec": "-1"},
    {"concurrency": "many"},
    {"format": "xml"},
])
def test_invalid_settings_are_rejected(client, extra):
    resp = client.post("/run", data={"urls": "http://a.test", **extra})
    assert resp.status_code == 400
    assert "error" in resp.get_json()


def test_full_run_over_http(client, http_server, refused_url):
    urls = [f"{http_server}/ok", refused_url, f"{http_server}/missing"]
    run_id = _run(client, "\n".join(urls), concurrency=2, timeout_sec=2)

    st = client.get(f"/runs/{run_id}").get_json()
    assert st["finished"]
    assert st["done"] == 3
    assert [r["url"] for r in st["results"]] == urls
    assert [r["kind"] for r in st["results"]] == ["success", "transport_error", "http_error"]
    assert st["stats"]["successful"] == 1
    assert st["stats"]["failed"] == 2

    report = client.get(f"/runs/{run_id}/report")
    assert report.status_code == 200
    rows = list(csv.DictReader(io.StringIO(report.get_data(as_text=True))))
    assert [r["status_code"] for r in rows] == ["200", "", "404"]

    as_json = client.get(f"/runs/{run_id}/report?format=json")
    assert as_json.status_code == 200
    assert json.loads(as_json.get_data(as_text=True))["metadata"]["total_urls"] == 3

    events = client.get(f"/events/{run_id}").get_data(as_text=True)
    assert '"type": "run_finished"' in events

    assert client.post(f"/runs/{run_id}/cancel").status_code == 409


def test_unknown_run_returns_404(client):
    assert client.get("/runs/nope").status_code == 404
    assert client.get("/runs/nope/report").status_code == 404
    assert client.post("/runs/nope/cancel").status_code == 404
    assert client.get("/events/nope").status_code == 404


def test_other_format_downloads_render_in_memory(client, http_server, isolated_config):
    run_id = _run(client, f"{http_server}/ok\n{http_server}/missing", timeout_sec=2)
    app = client.application
    bodies = []
    lock = threading.Lock()

    def download():
        resp = app.test_client().get(f"/runs/{run_id}/report?format=md")
        with lock:
            bodies.append((resp.status_code, resp.get_data(as_text=True)))

    workers = [threading.Thread(target=download) for _ in range(8)]
    for t in workers:
        t.start()
    for t in workers:
        t.join(10)

    assert len(bodies) == 8
    assert all(code == 200 and "| 2 |" in text for code, text in bodies)
    assert not (isolated_config / "reports" / ".tmp").exists()


def test_side_effect_method_from_env_is_rejected(client, monkeypatch):
    monkeypatch.setenv("HTTP_METHOD", "POST")
    ConfigStore.reset()
    resp = client.post("/run", data={"urls": "http://a.test"})

    assert resp.status_code == 400
    assert "HTTP method" in resp.get_json()["error"]
