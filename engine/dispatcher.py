from __future__ import annotations
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable

from schemas.models import CheckRequest, OutcomeKind, ProbeOutcome, RunResult
from logging_.engine_logger import get_engine_logger
from .collector import ResultCollector
from .errors import DuplicateIndexError
from .probe import Probe
from .stats import SuccessPredicate, compute_stats, default_success

log = get_engine_logger()

StartListener = Callable[[int, str], None]
OutcomeListener = Callable[[ProbeOutcome], None]


class Dispatcher:
    """
    Runs every target of a CheckRequest through a bounded pool of probes.

    Targets are admitted strictly in input order: the admitting thread takes
    a slot, hands the target to a worker and waits until that worker has
    actually started it before looking at the next one. Completion order is
    whatever the network gives us; each outcome carries the index it was
    dispatched with, so the collector restores input order.
    """

    def __init__(
            self,
            request: CheckRequest,
            probe: Probe | None = None,
            collector: ResultCollector | None = None,
            on_start: StartListener | None = None,
            on_outcome: OutcomeListener | None = None,
            is_success: SuccessPredicate = default_success,
            run_id: str = "-",
    ):
        self.request = request
        self.probe = probe or Probe()
        self.collector = collector or ResultCollector(total=len(request.targets))
        self.on_start = on_start
        self.on_outcome = on_outcome
        self.is_success = is_success
        self.run_id = run_id

        self._slots = threading.BoundedSemaphore(request.concurrency)
        self._cancel = threading.Event()
        self._lock = threading.Lock()
        self._in_flight = 0
        self._started = 0

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def started(self) -> int:
        with self._lock:
            return self._started

    def cancel(self):
        """Stop admitting new targets. Probes already running finish on their own."""
        if not self._cancel.is_set():
            log.info(f"[{self.run_id}] Cancel requested, no new probes will be started.")
        self._cancel.set()

    def _notify(self, listener, *args):
        if listener is None:
            return
        try:
            listener(*args)
        except Exception as e:
            # ошибки подписчиков не должны останавливать прогон
            log.error(f"[{self.run_id}] Listener {listener!r} failed: {e}", exc_info=True)

    def _probe_task(self, index: int, url: str, admitted: threading.Event):
        start = time.perf_counter()
        try:
            with self._lock:
                self._in_flight += 1
            self._notify(self.on_start, index, url)
            admitted.set()

            try:
                outcome = self.probe.run(url, self.request.timeout)
            except Exception as e:
                log.error(f"[{self.run_id}] Unhandled exception in probe for {url}: {e}", exc_info=True)
                outcome = ProbeOutcome(
                    url=url,
                    status_code=None,
                    status_reason=f"Worker failed: {e}",
                    elapsed=time.perf_counter() - start,
                    response_size=0,
                    timestamp=datetime.now(timezone.utc),
                    outcome_kind=OutcomeKind.TRANSPORT_ERROR,
                )

            outcome = outcome.with_index(index)
            try:
                self.collector.record(outcome)
            except (DuplicateIndexError, ValueError):
                self._cancel.set()
                raise
            log.debug(f"[{self.run_id}] #{index} {url} -> {outcome.outcome_kind.value} {outcome.status_code}")
            self._notify(self.on_outcome, outcome)
        finally:
            admitted.set()
            with self._lock:
                self._in_flight -= 1
            self._slots.release()

    def run(self) -> RunResult:
        targets = self.request.targets
        started_at = datetime.now(timezone.utc)
        log.info(
            f"[{self.run_id}] Run started: {len(targets)} targets, "
            f"concurrency={self.request.concurrency}, timeout={self.request.timeout}s."
        )

        futures = []
        pool = ThreadPoolExecutor(max_workers=self.request.concurrency, thread_name_prefix="probe")
        try:
            for index, url in enumerate(targets):
                # блокируемся, пока не освободится слот
                self._slots.acquire()
                if self._cancel.is_set():
                    self._slots.release()
                    break
                admitted = threading.Event()
                futures.append(pool.submit(self._probe_task, index, url, admitted))
                with self._lock:
                    self._started += 1
                admitted.wait()
            pool.shutdown(wait=True)
        except KeyboardInterrupt:
            # не ждем пробы в полете, отдаем то, что уже собрано
            log.warning(f"[{self.run_id}] Interrupted, returning the outcomes collected so far.")
            self._cancel.set()
            pool.shutdown(wait=False, cancel_futures=True)

        for fut in futures:
            if not fut.done() or fut.cancelled():
                continue
            exc = fut.exception()
            if exc is not None:
                log.critical(f"[{self.run_id}] Run aborted: {exc}")
                raise exc

        outcomes = self.collector.snapshot()
        result = RunResult(
            outcomes=tuple(outcomes),
            stats=compute_stats(outcomes, self.is_success),
            total_targets=len(targets),
            started=self.started,
            cancelled=self._cancel.is_set(),
            started_at=started_at,
        )
        log.info(
            f"[{self.run_id}] Run finished: {len(outcomes)}/{len(targets)} outcomes, "
            f"ok={result.stats.succeeded}, failed={result.stats.failed}, partial={result.partial}."
        )
        return result


def run_checks(request: CheckRequest, probe: Probe | None = None, **kwargs) -> RunResult:
    return Dispatcher(request, probe=probe, **kwargs).run()
