from flask import (
    Blueprint, request, Response, jsonify, send_file
)
import os

from config.loader import ConfigStore
from engine.orchestrator import start_run, get_run_state, get_run_result, cancel_run
from engine.targets import parse_targets
from logging_.engine_logger import get_engine_logger
from logging_.report_writer import check_format, render_report
from schemas.models import CheckRequest

log = get_engine_logger()

bp = Blueprint("routes", __name__)

_MIMETYPES = {
    "csv": "text/csv",
    "json": "application/json",
    "md": "text/markdown",
}


def _param(name: str):
    if request.is_json:
        return (request.get_json(silent=True) or {}).get(name)
    return request.form.get(name)


@bp.get("/health")
def health():
    return jsonify({"status": "ok"})


@bp.get("/")
def index():
    cfg = ConfigStore.get()
    return jsonify({
        "service": "url-checker",
        "defaults": dict(
            concurrency=cfg.execution.max_concurrency,
            timeout_sec=cfg.execution.timeout_sec,
            method=cfg.http_client.method,
            format=cfg.report.format,
        ),
    })


@bp.post("/run")
def launch_run():
    cfg = ConfigStore.get()

    urls_raw = _param("urls") or ""
    if isinstance(urls_raw, list):
        urls_raw = "\n".join(str(u) for u in urls_raw)
    urls = parse_targets(urls_raw, dedupe=cfg.execution.dedupe)

    if not urls:
        log.warning("Run rejected: No URLs provided.")
        return jsonify({"error": "No URLs provided"}), 400

    try:
        concurrency = int(_param("concurrency") or cfg.execution.max_concurrency)
        timeout = float(_param("timeout_sec") or cfg.execution.timeout_sec)
    except (TypeError, ValueError) as e:
        log.warning(f"Run rejected: bad numeric setting: {e}")
        return jsonify({"error": f"Invalid setting: {e}"}), 400

    # ConfigError отсюда превращается в 400 обработчиком приложения
    check_request = CheckRequest(targets=urls, concurrency=concurrency, timeout=timeout)
    fmt = check_format(_param("format") or cfg.report.format)

    log.info(
        f"Accepted /run request. URLs: {len(urls)}. "
        f"Concurrency: {concurrency}. Timeout: {timeout}s. Starting run..."
    )

    run_id = start_run(check_request, fmt=fmt)
    log.info(f"[{run_id}] Returning HTTP 202 to client.")

    return jsonify({"run_id": run_id}), 202


@bp.get("/runs/<run_id>")
def run_state(run_id: str):
    st = get_run_state(run_id, with_results=True)
    if st is None:
        return jsonify({"error": "Unknown run"}), 404
    return jsonify(st)


@bp.post("/runs/<run_id>/cancel")
def run_cancel(run_id: str):
    st = get_run_state(run_id)
    if st is None:
        return jsonify({"error": "Unknown run"}), 404
    if not cancel_run(run_id):
        return jsonify({"run_id": run_id, "cancelled": False, "message": "Run already finished"}), 409
    log.info(f"[{run_id}] Cancel accepted.")
    return jsonify({"run_id": run_id, "cancelled": True}), 202


@bp.get("/runs/<run_id>/report")
def run_report(run_id: str):
    st = get_run_state(run_id)
    if st is None:
        return jsonify({"error": "Unknown run"}), 404

    result = get_run_result(run_id)
    if result is None:
        return jsonify({"error": "Run is not finished yet"}), 409

    fmt = check_format(request.args.get("format") or st["format"])

    cfg = ConfigStore.get()
    if st["report"] and fmt == st["format"]:
        path = os.path.join(cfg.paths.reports_dir, st["report"])
        if os.path.exists(path):
            return send_file(os.path.abspath(path), mimetype=_MIMETYPES[fmt],
                             as_attachment=True, download_name=f"report-{run_id}.{fmt}")

    # другой формат (или файл пропал): рендерим в памяти
    data = render_report(result, fmt)
    return Response(
        data,
        mimetype=_MIMETYPES[fmt],
        headers={"Content-Disposition": f"attachment; filename=report-{run_id}.{fmt}"},
    )
