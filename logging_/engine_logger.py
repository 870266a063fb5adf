from __future__ import annotations
import logging, os
import sys
from datetime import datetime
from logging import Formatter
from logging import FileHandler, StreamHandler

_engine_logger = None
_configured = False

ENGINE_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_engine_logger():
    """
    Gets the singleton logger instance.
    Setup is handled by setup_loggers().
    """
    global _engine_logger
    if _engine_logger is None:
        _engine_logger = logging.getLogger("engine")
    return _engine_logger


def setup_loggers(app=None, console: bool = False, level: str | None = None):
    """
    Configures the 'engine' logger from the global config: engine.log in
    paths.logs_dir, plus stderr output for the CLI when console=True.
    With a Flask app, also wires the 'access' logger to every response.
    """
    global _configured
    from config.loader import ConfigStore

    cfg = ConfigStore.get()
    log_dir = cfg.paths.logs_dir
    os.makedirs(log_dir, exist_ok=True)

    log_level_str = (level or cfg.logging.level).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    engine_logger = get_engine_logger()
    engine_logger.setLevel(log_level)

    if not _configured:
        engine_fmt = Formatter(ENGINE_FORMAT, DATE_FORMAT)
        engine_handler = FileHandler(os.path.join(log_dir, "engine.log"), encoding="utf-8")
        engine_handler.setFormatter(engine_fmt)
        engine_logger.addHandler(engine_handler)

        if console:
            # в консоль только предупреждения, результаты печатает сам CLI
            console_handler = StreamHandler(sys.stderr)
            console_handler.setFormatter(engine_fmt)
            console_handler.setLevel(max(log_level, logging.WARNING))
            engine_logger.addHandler(console_handler)

        engine_logger.propagate = False
        _configured = True

    if app is not None:
        _setup_access_log(app, log_dir)

    engine_logger.info(f"Loggers initialized. Engine log level set to {log_level_str}.")
    return engine_logger


def _setup_access_log(app, log_dir: str):
    from flask import request, Response

    access_logger = logging.getLogger("access")
    access_logger.setLevel(logging.INFO)
    if not access_logger.handlers:
        access_handler = FileHandler(os.path.join(log_dir, "access.log"), encoding="utf-8")
        access_handler.setFormatter(Formatter('%(message)s'))
        access_logger.addHandler(access_handler)
    access_logger.propagate = False

    @app.after_request
    def log_access(response: Response):
        # SSE-поток слишком шумный для access.log
        if request.path.startswith('/events/'):
            return response

        ts = datetime.now().strftime(DATE_FORMAT)
        access_logger.info(
            f'[{ts}] {request.remote_addr} - "{request.method} {request.full_path}" '
            f'{response.status_code}'
        )
        return response
