import json

from flask import Blueprint, Response, jsonify
from engine.orchestrator import sse_subscribe, sse_unsubscribe, get_run_state
from logging_.engine_logger import get_engine_logger

log = get_engine_logger()

bp = Blueprint("sse", __name__, url_prefix="/events")


def _final_event(run_id: str, st: dict) -> str:
    final = {"type": "run_finished", "run_id": run_id, "stats": st["stats"],
             "partial": st["partial"], "cancelled": st["cancelled"], "report": st["report"]}
    if st.get("error"):
        final = {"type": "run_failed", "run_id": run_id, "error": st["error"]}
    return f"data: {json.dumps(final, ensure_ascii=False)}\n\n"


@bp.get("/<run_id>")
def events(run_id: str):
    if get_run_state(run_id) is None:
        return jsonify({"error": "Unknown run"}), 404

    log.info(f"[{run_id}] Client connected to SSE stream.")

    q = sse_subscribe(run_id)

    # finished выставляется до закрытия очереди, поэтому проверяем после подписки
    st = get_run_state(run_id)
    if st["finished"] and q.empty():
        sse_unsubscribe(run_id)
        return Response(iter([_final_event(run_id, st)]), mimetype="text/event-stream")

    def stream():
        while True:
            msg = q.get()  # блокирующе ждем сообщение или None

            if msg is None:
                log.debug(f"[{run_id}] Received None sentinel, closing SSE stream.")
                break

            yield f"data: {msg}\n\n"

    return Response(stream(), mimetype="text/event-stream")
