import json
import os

from config.loader import ConfigStore
from engine import orchestrator
from schemas.models import CheckRequest
from stubs import GatedProbe, InstrumentedProbe


def _drain(q):
    events = []
    while True:
        msg = q.get(timeout=5)
        if msg is None:
            return events
        events.append(json.loads(msg))


def test_run_streams_events_and_writes_report():
    urls = [f"http://t{i}.test/" for i in range(3)]
    probe = GatedProbe()
    run_id = orchestrator.start_run(CheckRequest(targets=urls, concurrency=2, timeout=1), probe=probe, fmt="json")
    q = orchestrator.sse_subscribe(run_id)

    for u in urls:
        probe.release(u)
    events = _drain(q)
    assert orchestrator.wait_for_run(run_id, timeout=5)

    types = [e["type"] for e in events]
    assert types[0] == "run_started"
    assert types[-1] == "run_finished"
    assert types.count("check_started") == 3
    assert types.count("check_finished") == 3
    finished = [e for e in events if e["type"] == "check_finished"]
    assert sorted(e["index"] for e in finished) == [0, 1, 2]
    assert all(e["kind"] == "success" for e in finished)

    st = orchestrator.get_run_state(run_id, with_results=True)
    assert st["finished"] and st["done"] == 3
    assert not st["partial"]
    assert [r["index"] for r in st["results"]] == [0, 1, 2]
    assert st["stats"]["total_urls"] == 3
    report_path = os.path.join(ConfigStore.get().paths.reports_dir, st["report"])
    with open(report_path, encoding="utf-8") as f:
        assert len(json.load(f)["results"]) == 3


def test_cancel_run_returns_partial_state():
    urls = [f"http://t{i}.test/" for i in range(5)]
    probe = GatedProbe()
    run_id = orchestrator.start_run(CheckRequest(targets=urls, concurrency=1, timeout=1), probe=probe)

    assert probe.wait_started(urls[0])
    assert orchestrator.cancel_run(run_id)
    probe.release(urls[0])
    assert orchestrator.wait_for_run(run_id, timeout=5)

    st = orchestrator.get_run_state(run_id)
    assert st["cancel_requested"] and st["cancelled"]
    assert st["partial"]
    assert st["done"] == 1
    assert st["stats"]["total_urls"] == 1
    assert orchestrator.get_run_result(run_id).total_targets == 5
    assert not orchestrator.cancel_run(run_id)


def test_failed_run_is_reported(monkeypatch):
    def boom(self):
        raise RuntimeError("boom")

    monkeypatch.setattr(orchestrator.Dispatcher, "run", boom)
    run_id = orchestrator.start_run(CheckRequest(targets=["http://t0.test/"], concurrency=1, timeout=1),
                                    probe=InstrumentedProbe())
    assert orchestrator.wait_for_run(run_id, timeout=5)

    st = orchestrator.get_run_state(run_id)
    assert st["finished"]
    assert st["error"] == "boom"
    assert orchestrator.get_run_result(run_id) is None


def test_unknown_run():
    assert orchestrator.get_run_state("nope") is None
    assert orchestrator.get_run_result("nope") is None
    assert not orchestrator.cancel_run("nope")
