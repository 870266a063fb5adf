from __future__ import annotations
import os, yaml
from dataclasses import dataclass, field, asdict
from typing import Any, Dict

from engine.errors import ConfigError


@dataclass
class AppCfg:
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class LoggingCfg:
    level: str = "INFO"


@dataclass
class PathsCfg:
    logs_dir: str = "logs"
    data_dir: str = "data"
    reports_dir: str = "reports"


@dataclass
class ExecCfg:
    max_concurrency: int = 20
    timeout_sec: float = 10.0
    dedupe: bool = False
    success_status_below: int = 400


@dataclass
class HttpCfg:
    user_agent: str = "url-checker/0.2"
    method: str = "GET"
    max_redirects: int = 10
    verify_tls: bool = True
    custom_headers: Dict[str, str] = field(default_factory=dict)


@dataclass
class ReportCfg:
    input_file: str = "urls.txt"
    output_file: str = "report.csv"
    format: str = "csv"


@dataclass
class RootCfg:
    app: AppCfg
    logging: LoggingCfg
    paths: PathsCfg
    execution: ExecCfg
    http_client: HttpCfg
    report: ReportCfg


_SECTIONS = {
    "app": AppCfg,
    "logging": LoggingCfg,
    "paths": PathsCfg,
    "execution": ExecCfg,
    "http_client": HttpCfg,
    "report": ReportCfg,
}


def _to_bool(val: str) -> bool:
    return str(val).strip().lower() in ("1", "true", "yes", "on")


def config_path() -> str:
    explicit = os.environ.get("CHECKER_CONFIG")
    if explicit:
        return explicit
    data_dir = os.environ.get("DATA_DIR", "data")
    return os.path.join(data_dir, "config", "app.yaml")


class ConfigStore:
    _cfg: RootCfg = None
    _yaml_text: str = ""

    @classmethod
    def init(cls, path: str | None = None):
        app_yaml = path or config_path()
        data: dict[str, Any] = {}

        if os.path.exists(app_yaml):
            try:
                with open(app_yaml, "r", encoding="utf-8") as f:
                    text = f.read()
                data = yaml.safe_load(text) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigError(f"Could not load config {app_yaml}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"Config {app_yaml} must be a mapping, got {type(data).__name__}")
            cls._yaml_text = text
        else:
            # без файла работаем на дефолтах секций
            cls._yaml_text = ""

        sections = {}
        for name, section_cls in _SECTIONS.items():
            raw = data.get(name) or {}
            try:
                sections[name] = section_cls(**raw)
            except TypeError as e:
                raise ConfigError(f"Invalid '{name}' section in {app_yaml}: {e}") from e

        cls._cfg = RootCfg(**sections)
        cls._override_from_env(cls._cfg)

    @classmethod
    def _override_from_env(cls, cfg: RootCfg):
        env_map = {
            "APP_HOST": (cfg.app, "host"),
            "APP_PORT": (cfg.app, "port", int),
            "LOG_LEVEL": (cfg.logging, "level"),
            "LOG_DIR": (cfg.paths, "logs_dir"),
            "DATA_DIR": (cfg.paths, "data_dir"),
            "REPORTS_DIR": (cfg.paths, "reports_dir"),
            "MAX_CONCURRENCY": (cfg.execution, "max_concurrency", int),
            "CHECK_TIMEOUT_SEC": (cfg.execution, "timeout_sec", float),
            "DEDUPE_TARGETS": (cfg.execution, "dedupe", _to_bool),
            "SUCCESS_STATUS_BELOW": (cfg.execution, "success_status_below", int),
            "USER_AGENT": (cfg.http_client, "user_agent"),
            "HTTP_METHOD": (cfg.http_client, "method"),
            "MAX_REDIRECTS": (cfg.http_client, "max_redirects", int),
            "VERIFY_TLS": (cfg.http_client, "verify_tls", _to_bool),
            "URLS_FILE": (cfg.report, "input_file"),
            "REPORT_FILE": (cfg.report, "output_file"),
            "REPORT_FORMAT": (cfg.report, "format"),
        }

        for env_key, info in env_map.items():
            val = os.environ.get(env_key)
            if val is not None:
                obj, attr_name = info[0], info[1]
                cast_func = info[2] if len(info) > 2 else str

                try:
                    setattr(obj, attr_name, cast_func(val))
                except (ValueError, TypeError) as e:
                    raise ConfigError(f"Could not cast env var {env_key}={val!r}: {e}") from e

    @classmethod
    def get(cls) -> RootCfg:
        if cls._cfg is None:
            cls.init()
        return cls._cfg

    @classmethod
    def reset(cls):
        cls._cfg = None
        cls._yaml_text = ""

    @classmethod
    def raw_yaml(cls) -> str:
        return cls._yaml_text

    @classmethod
    def as_dict(cls) -> dict:
        return asdict(cls.get())
