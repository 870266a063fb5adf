import argparse
import sys
import threading

from dotenv import load_dotenv

from config.loader import ConfigStore
from engine.dispatcher import Dispatcher
from engine.errors import ConfigError
from engine.probe import Probe
from engine.stats import display_kind, status_below
from engine.targets import load_targets
from logging_.engine_logger import get_engine_logger, setup_loggers
from logging_.report_writer import check_format, write_report
from schemas.models import CheckRequest, OutcomeKind, ProbeOutcome, RunResult

log = get_engine_logger()

LINE = "─" * 100
BANNER = "═" * 100

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def format_size(num_bytes: int) -> str:
    if num_bytes == 0:
        return "N/A"
    units = ["B", "KB", "MB", "GB"]
    size = float(num_bytes)
    unit = 0
    while size >= 1024 and unit < len(units) - 1:
        size /= 1024
        unit += 1
    if unit == 0:
        return f"{num_bytes} B"
    return f"{size:.2f} {units[unit]}"


def truncate_url(url: str, width: int = 48) -> str:
    if len(url) > width:
        return url[:width - 3] + "..."
    return url


def result_label(o: ProbeOutcome, is_success) -> str:
    kind = display_kind(o, is_success)
    if kind == OutcomeKind.TIMEOUT:
        return "✗ TIMEOUT"
    if kind == OutcomeKind.TRANSPORT_ERROR:
        return "✗ FAILED"
    code = o.status_code
    if kind == OutcomeKind.SUCCESS:
        return "↻ REDIRECT" if 300 <= code < 400 else "✓ OK"
    if code >= 500:
        return "✗ SERVER ERROR"
    if code >= 400:
        return "✗ CLIENT ERROR"
    return f"✗ HTTP {code}"


def print_header(args):
    print()
    print(BANNER)
    print("  URL CHECKER - Web Status Monitor")
    print(BANNER)
    print(f"• Input file:  {args.input}")
    print(f"• Output file: {args.output} ({args.format})")
    print(f"• Concurrency: {args.concurrency}")
    print(f"• Timeout:     {args.timeout}s")
    print(BANNER)


def print_results(result: RunResult, is_success):
    print()
    print(LINE)
    print(f"{'URL':<50} {'STATUS':<8} {'TIME (ms)':<12} {'SIZE':<10} RESULT")
    print(LINE)
    for o in result.outcomes:
        if o.status_code is None:
            status, time_str, size_str = "ERROR", "N/A", "N/A"
            if o.outcome_kind == OutcomeKind.TIMEOUT:
                time_str = str(o.elapsed_ms)
        else:
            status, time_str, size_str = str(o.status_code), str(o.elapsed_ms), format_size(o.response_size)
        print(f"{truncate_url(o.url):<50} {status:<8} {time_str:<12} {size_str:<10} {result_label(o, is_success)}")
        if o.status_code is None:
            print(f"    └ {o.status_reason}")


def print_statistics(result: RunResult, output_file: str | None):
    stats = result.stats
    print(LINE)
    print()
    print("STATISTICS")
    print(LINE)
    print(f"  • Total URLs checked:    {stats.total}")
    print(f"  • Successful:            {stats.succeeded} ({stats.success_rate:.1f}%)")
    failed_rate = 100.0 - stats.success_rate if stats.total else 0.0
    print(f"  • Failed/Errors:         {stats.failed} ({failed_rate:.1f}%)")
    print()
    if stats.total:
        print(f"  • Average response time: {stats.avg_latency * 1000:.0f} ms")
        print(f"  • Fastest response:      {stats.min_latency * 1000:.0f} ms")
        print(f"  • Slowest response:      {stats.max_latency * 1000:.0f} ms")
    else:
        print("  • Average response time: N/A")
        print("  • Fastest response:      N/A")
        print("  • Slowest response:      N/A")
    print(f"  • Total data received:   {format_size(stats.total_bytes)}")
    print(f"  • Time to run:           {result.duration:.2f} s")
    if result.partial:
        print(f"  • PARTIAL RUN:           {len(result.outcomes)} of {result.total_targets} targets checked")
    print()
    if output_file:
        print(f"  • Report saved to:       {output_file}")
    print(LINE)
    print()


def build_parser() -> argparse.ArgumentParser:
    cfg = ConfigStore.get()
    p = argparse.ArgumentParser(description="Concurrent URL status checker")
    p.add_argument("-i", "--input", default=cfg.report.input_file,
                   help="file with URLs to check, one per line")
    p.add_argument("-o", "--output", default=cfg.report.output_file,
                   help="report file path")
    p.add_argument("-f", "--format", default=cfg.report.format,
                   help="report format: csv, json or md")
    p.add_argument("-c", "--concurrency", type=int, default=cfg.execution.max_concurrency,
                   help="maximum simultaneous requests")
    p.add_argument("-t", "--timeout", type=float, default=cfg.execution.timeout_sec,
                   help="per-request timeout in seconds")
    p.add_argument("--method", default=cfg.http_client.method,
                   help="HTTP method for every probe (GET or HEAD)")
    p.add_argument("--dedupe", action="store_true", default=cfg.execution.dedupe,
                   help="drop repeated URLs, keeping the first occurrence")
    p.add_argument("--success-below", type=int, default=cfg.execution.success_status_below,
                   help="status codes below this count as successful")
    p.add_argument("-q", "--quiet", action="store_true",
                   help="no live progress lines")
    return p


def main(argv=None) -> int:
    load_dotenv()
    try:
        ConfigStore.init()
        args = build_parser().parse_args(argv)
        setup_loggers(console=True)

        fmt = check_format(args.format)
        urls = load_targets(args.input, dedupe=args.dedupe)
        request = CheckRequest(targets=urls, concurrency=args.concurrency, timeout=args.timeout)
        probe = Probe.from_config(ConfigStore.get().http_client, method=args.method)
    except ConfigError as e:
        print(f"✗ {e}", file=sys.stderr)
        return EXIT_CONFIG

    args.format = fmt
    print_header(args)

    if not urls:
        print(f"✗ File {args.input} is empty or contains no URLs. Exiting.", file=sys.stderr)
        return EXIT_OK

    print(f"ℹ Found {len(urls)} URL(s) to check\n")

    is_success = status_below(args.success_below)

    print_lock = threading.Lock()
    done = [0]

    def on_outcome(o: ProbeOutcome):
        with print_lock:
            done[0] += 1
            if not args.quiet:
                code = o.status_code if o.status_code is not None else "-"
                print(f"[{done[0]}/{len(urls)}] {truncate_url(o.url, 60)} {code} {o.elapsed_ms} ms",
                      flush=True)

    dispatcher = Dispatcher(request, probe=probe, on_outcome=on_outcome, is_success=is_success, run_id="cli")
    result = dispatcher.run()

    print_results(result, is_success)

    output = None
    try:
        output = write_report(args.output, result, fmt)
    except OSError as e:
        log.error(f"Could not write report to {args.output}: {e}")
        print(f"✗ Could not write report to {args.output}: {e}", file=sys.stderr)

    print_statistics(result, output)

    if result.cancelled and result.partial:
        return EXIT_INTERRUPTED
    if output is None:
        return EXIT_FAILURES
    return EXIT_OK if result.stats.failed == 0 else EXIT_FAILURES


if __name__ == "__main__":
    sys.exit(main())
