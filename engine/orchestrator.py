from __future__ import annotations
import json, queue, threading, uuid, os, time
from datetime import datetime
from typing import Dict, Any

from config.loader import ConfigStore
from logging_.engine_logger import get_engine_logger
from logging_.report_writer import ensure_day_dir, unique_file_path, write_report, check_format
from schemas.models import CheckRequest, ProbeOutcome, RunResult
from .dispatcher import Dispatcher
from .probe import Probe
from .stats import display_kind, status_below

_engine_logger = get_engine_logger()

_runs_state: Dict[str, Dict[str, Any]] = {}
_sse_queues: Dict[str, "queue.Queue[str | None]"] = {}
_lock = threading.Lock()

SSE_QUEUE_SIZE = 1000


def _sse_emit(run_id: str, payload: dict):
    msg = json.dumps(payload, ensure_ascii=False)

    _engine_logger.debug(
        f"[{run_id}] Emitting SSE event type: {payload.get('type')}, "
        f"URL: {payload.get('url', 'N/A')}"
    )

    with _lock:
        q = _sse_queues.get(run_id)
    if q:
        try:
            q.put(msg, block=False)
        except queue.Full:
            _engine_logger.warning(f"SSE queue full for run_id {run_id}")


def sse_subscribe(run_id: str) -> "queue.Queue[str | None]":
    """Подписка UI на события запуска; очередь создается один раз на run_id."""
    with _lock:
        q = _sse_queues.get(run_id)
        if q is None:
            q = queue.Queue(maxsize=SSE_QUEUE_SIZE)
            _sse_queues[run_id] = q
    return q


def sse_unsubscribe(run_id: str):
    with _lock:
        _sse_queues.pop(run_id, None)


def _public_state(st: dict) -> dict:
    return {k: v for k, v in st.items() if not k.startswith("_")}


def get_run_state(run_id: str, with_results: bool = False) -> dict | None:
    with _lock:
        st = _runs_state.get(run_id)
        if st is None:
            return None
        public = _public_state(st)
        dispatcher = st.get("_dispatcher")
        is_success = st.get("_is_success")

    if with_results and dispatcher is not None:
        public["results"] = [
            {"index": o.index, "kind": display_kind(o, is_success).value, **o.to_row()}
            for o in dispatcher.collector.snapshot()
        ]
    return public


def get_run_result(run_id: str) -> RunResult | None:
    with _lock:
        st = _runs_state.get(run_id)
        return st.get("_result") if st else None


def cancel_run(run_id: str) -> bool:
    with _lock:
        st = _runs_state.get(run_id)
        dispatcher = st.get("_dispatcher") if st else None
        if st is None or st["finished"]:
            return False
        st["cancel_requested"] = True
    if dispatcher is not None:
        dispatcher.cancel()
    return True


def _save_report(run_id: str, result: RunResult, fmt: str) -> str | None:
    cfg = ConfigStore.get()
    try:
        day_dir = ensure_day_dir(cfg.paths.reports_dir)
        base = datetime.now().strftime("%H-%M-%S") + f"_run-{run_id}"
        path = unique_file_path(day_dir, base, fmt)
        write_report(path, result, fmt)
        _engine_logger.info(f"[{run_id}] Report written to {path}")
        return os.path.relpath(path, cfg.paths.reports_dir).replace(os.path.sep, '/')
    except OSError as e:
        _engine_logger.error(f"[{run_id}] Failed to write report: {e}", exc_info=True)
        return None


def _run_checks_async(dispatcher: Dispatcher, run_id: str, fmt: str):
    """Runs in a background thread and does the actual probing."""
    _engine_logger.info(f"[{run_id}] Background thread started.")

    try:
        result = dispatcher.run()
    except Exception as e:
        _engine_logger.error(f"[{run_id}] Run failed: {e}", exc_info=True)
        with _lock:
            st = _runs_state[run_id]
            st["finished"] = True
            st["error"] = str(e)
        _sse_emit(run_id, {"type": "run_failed", "run_id": run_id, "error": str(e)})
        _close_stream(run_id)
        st["_done"].set()
        return

    report_name = _save_report(run_id, result, fmt)

    with _lock:
        st = _runs_state[run_id]
        st["_result"] = result
        st["finished"] = True
        st["cancelled"] = result.cancelled
        st["partial"] = result.partial
        st["stats"] = result.stats.to_dict()
        st["report"] = report_name

    _sse_emit(run_id, {"type": "run_finished", "run_id": run_id,
                       "totals": {"ok": result.stats.succeeded,
                                  "err": result.stats.failed,
                                  "time_ms": int((time.time() - st["started_at"]) * 1000)},
                       "stats": result.stats.to_dict(),
                       "partial": result.partial,
                       "cancelled": result.cancelled,
                       "report": report_name})

    _engine_logger.info(f"[{run_id}] 'run_finished' emitted. Unsubscribing SSE.")
    _close_stream(run_id)
    st["_done"].set()


def _close_stream(run_id: str):
    # None в очереди: сигнал SSE-обработчику закрыть поток
    with _lock:
        q = _sse_queues.get(run_id)
    if q:
        try:
            q.put(None, block=False)
        except queue.Full:
            _engine_logger.warning(f"SSE queue full when trying to send None sentinel for run_id {run_id}")
    sse_unsubscribe(run_id)


def start_run(request: CheckRequest, probe: Probe | None = None, fmt: str | None = None) -> str:
    """
    Called from POST /run. Registers the run, spawns the background thread
    and returns the run_id immediately.
    """
    cfg = ConfigStore.get()
    fmt = check_format(fmt or cfg.report.format)
    run_id = uuid.uuid4().hex[:12]
    total = len(request.targets)
    is_success = status_below(cfg.execution.success_status_below)

    _engine_logger.info(f"[{run_id}] Creating run state (Total: {total} URLs).")

    def on_start(index: int, url: str):
        _sse_emit(run_id, {"type": "check_started", "run_id": run_id, "index": index, "url": url})

    def on_outcome(outcome: ProbeOutcome):
        with _lock:
            _runs_state[run_id]["done"] += 1
        _sse_emit(run_id, {"type": "check_finished", "run_id": run_id, "index": outcome.index,
                           "kind": display_kind(outcome, is_success).value, **outcome.to_row()})

    dispatcher = Dispatcher(
        request,
        probe=probe or Probe.from_config(cfg.http_client),
        on_start=on_start,
        on_outcome=on_outcome,
        is_success=is_success,
        run_id=run_id,
    )

    state = {
        "run_id": run_id,
        "total": total,
        "done": 0,
        "concurrency": request.concurrency,
        "timeout_sec": request.timeout,
        "format": fmt,
        "started_at": time.time(),
        "finished": False,
        "cancel_requested": False,
        "cancelled": False,
        "partial": False,
        "stats": None,
        "report": None,
        "error": None,
        "_dispatcher": dispatcher,
        "_result": None,
        "_done": threading.Event(),
        "_is_success": is_success,
    }
    with _lock:
        _runs_state[run_id] = state

    # очередь SSE создаем до запуска потока, чтобы не потерять первые события
    sse_subscribe(run_id)

    _sse_emit(run_id, {"type": "run_started", "run_id": run_id, "ts": datetime.now().isoformat(timespec="seconds"),
                       "settings": {"total": total, "concurrency": request.concurrency,
                                    "timeout_sec": request.timeout, "format": fmt}})

    _engine_logger.info(f"[{run_id}] Spawning background thread...")
    thread = threading.Thread(
        target=_run_checks_async,
        args=(dispatcher, run_id, fmt),
        daemon=True
    )
    thread.start()

    return run_id


def wait_for_run(run_id: str, timeout: float | None = None) -> bool:
    """Blocks until the run finishes; returns False on timeout."""
    with _lock:
        st = _runs_state.get(run_id)
    if st is None:
        return True
    return st["_done"].wait(timeout)
