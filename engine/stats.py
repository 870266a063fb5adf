from __future__ import annotations
from typing import Callable, Iterable

from schemas.models import OutcomeKind, ProbeOutcome, RunStats

SuccessPredicate = Callable[[ProbeOutcome], bool]


def status_below(limit: int) -> SuccessPredicate:
    """Success predicate: a status line was fetched and its code is below `limit`."""
    def _pred(o: ProbeOutcome) -> bool:
        return o.status_code is not None and o.status_code < limit
    return _pred


default_success = status_below(400)


def compute_stats(outcomes: Iterable[ProbeOutcome], is_success: SuccessPredicate = default_success) -> RunStats:
    """
    Folds outcomes into summary statistics.

    Latency covers every outcome, failed ones included: elapsed time of a
    timeout or a refused connection is still meaningful. All latency values
    are 0.0 for an empty input.
    """
    total = 0
    succeeded = 0
    total_bytes = 0
    sum_elapsed = 0.0
    min_elapsed = None
    max_elapsed = None

    for o in outcomes:
        total += 1
        if is_success(o):
            succeeded += 1
        total_bytes += o.response_size
        sum_elapsed += o.elapsed
        if min_elapsed is None or o.elapsed < min_elapsed:
            min_elapsed = o.elapsed
        if max_elapsed is None or o.elapsed > max_elapsed:
            max_elapsed = o.elapsed

    if total == 0:
        return RunStats(total=0, succeeded=0, failed=0, avg_latency=0.0,
                        min_latency=0.0, max_latency=0.0, total_bytes=0)

    # среднее зажимаем в [min, max], чтобы погрешность float не вылезала за экстремумы
    avg = min(max(sum_elapsed / total, min_elapsed), max_elapsed)
    return RunStats(
        total=total,
        succeeded=succeeded,
        failed=total - succeeded,
        avg_latency=avg,
        min_latency=min_elapsed,
        max_latency=max_elapsed,
        total_bytes=total_bytes,
    )


def display_kind(o: ProbeOutcome, is_success: SuccessPredicate = default_success) -> OutcomeKind:
    """Reporting-level kind: a fetched status the predicate rejects is an http_error."""
    if o.outcome_kind == OutcomeKind.SUCCESS and not is_success(o):
        return OutcomeKind.HTTP_ERROR
    return o.outcome_kind
