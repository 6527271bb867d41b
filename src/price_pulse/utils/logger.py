import logging
import json
from logging import Logger
from functools import lru_cache
from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

# Load logging config
_DEFAULT_PROFILE = {
    "level": "INFO",
    "debug": {"enabled": False, "modules": []},
    "handlers": {"console": {"enabled": True}},
    "format": {"json": True, "timestamp_utc": True},
}


def _default_config_path() -> Path:
    return Path(__file__).resolve().parents[3] / "configs" / "logging.json"


def _load_logging_config(path: str | Path | None = None) -> dict:
    config_path = Path(path) if path is not None else _default_config_path()
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            return json.load(f)
    return {"active_profile": "default", "profiles": {"default": dict(_DEFAULT_PROFILE)}}


def _select_profile(cfg: dict, mode: str | None) -> dict:
    profiles = cfg.get("profiles")
    if not isinstance(profiles, dict):
        # flat (profile-less) config
        return cfg
    name = mode if mode in profiles else cfg.get("active_profile", "default")
    profile = profiles.get(name)
    if not isinstance(profile, dict):
        raise KeyError(f"logging profile not found: {name}")
    return profile


_CONFIGURED = False
_RUN_ID: str | None = None
_MODE: str | None = None
_DEBUG_ENABLED = False
_DEBUG_MODULES: set[str] = set()


def safe_jsonable(value: Any) -> Any:
    """Convert log context values into something json.dumps accepts."""
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {str(k): safe_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [safe_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return safe_jsonable(value.value)
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, BaseException):
        return f"{type(value).__name__}: {value}"
    if is_dataclass(value) and not isinstance(value, type):
        return safe_jsonable(asdict(value))
    try:
        return str(value)
    except Exception:
        return "<unrepr>"


def _debug_module_matches(logger_name: str, module: str) -> bool:
    """True if `module` names the logger or one of its dotted segments."""
    if logger_name == module or logger_name.startswith(module + "."):
        return True
    parts = logger_name.split(".")
    return module in parts


class ContextFilter(logging.Filter):
    """Guarantees record.context always exists and carries run_id / mode."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = getattr(record, "context", None)
        if not isinstance(context, dict):
            context = {} if context is None else {"value": context}
        if _RUN_ID is not None:
            context.setdefault("run_id", _RUN_ID)
        if _MODE is not None:
            context.setdefault("mode", _MODE)
        record.context = context
        return True


class JsonFormatter(logging.Formatter):
    """Structured JSON formatter for deterministic, parseable logs."""

    def format(self, record: logging.LogRecord) -> str:
        context = dict(getattr(record, "context", None) or {})
        category = context.pop("category", None)
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "ts_ms": int(record.created * 1000),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
            "module": record.module,
            "msg": record.getMessage(),
        }
        if category is not None:
            payload["category"] = category
        if context:
            payload["context"] = safe_jsonable(context)
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False)


def _make_handler(handler: logging.Handler, level: int, as_json: bool) -> logging.Handler:
    handler.setLevel(level)
    handler.addFilter(ContextFilter())
    if as_json:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    return handler


def init_logging(
    config_path: str | None = None,
    *,
    run_id: str | None = None,
    mode: str | None = None,
) -> None:
    """
    Configure the root logger from a logging profile.

    Call once at process start (apps layer). Loggers returned by
    `get_logger` before or after this call propagate to the root handlers.
    """
    global _CONFIGURED, _RUN_ID, _MODE, _DEBUG_ENABLED, _DEBUG_MODULES

    profile = _select_profile(_load_logging_config(config_path), mode)
    level = getattr(logging, str(profile.get("level", "INFO")).upper(), logging.INFO)
    debug_cfg = profile.get("debug", {}) or {}
    handlers_cfg = profile.get("handlers", {}) or {}
    as_json = bool((profile.get("format", {}) or {}).get("json", True))

    _RUN_ID = run_id
    _MODE = mode
    _DEBUG_ENABLED = bool(debug_cfg.get("enabled", False))
    _DEBUG_MODULES = set(debug_cfg.get("modules", []) or [])

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.setLevel(level)

    console_cfg = handlers_cfg.get("console", {}) or {}
    if console_cfg.get("enabled", True):
        console_level = getattr(logging, str(console_cfg.get("level", "DEBUG")).upper(), level)
        root.addHandler(_make_handler(logging.StreamHandler(), console_level, as_json))

    file_cfg = handlers_cfg.get("file", {}) or {}
    if file_cfg.get("enabled") and file_cfg.get("path"):
        path = Path(str(file_cfg["path"]).format(run_id=run_id or "default", mode=mode or "default"))
        path.parent.mkdir(parents=True, exist_ok=True)
        file_level = getattr(logging, str(file_cfg.get("level", "INFO")).upper(), level)
        root.addHandler(
            _make_handler(logging.FileHandler(path, encoding="utf-8"), file_level, as_json)
        )

    # loggers handed out before init carry their own stream handler
    for name in list(_handlers_installed):
        lg = logging.getLogger(name)
        for handler in list(lg.handlers):
            lg.removeHandler(handler)
        lg.setLevel(logging.NOTSET)
        lg.propagate = True
    _handlers_installed.clear()
    get_logger.cache_clear()

    _CONFIGURED = True


_handlers_installed: set[str] = set()


@lru_cache(None)
def get_logger(name: str = "price_pulse", level: int = logging.INFO) -> Logger:
    logger = logging.getLogger(name)

    if _CONFIGURED or logger.handlers:
        return logger

    logger.setLevel(level)
    handler = logging.StreamHandler()
    handler.addFilter(ContextFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    logger.propagate = False
    _handlers_installed.add(name)
    return logger


def log_debug(logger: Logger, msg: str, **context):
    if not _DEBUG_ENABLED:
        return
    if _DEBUG_MODULES and not any(_debug_module_matches(logger.name, m) for m in _DEBUG_MODULES):
        return
    logger.debug(msg, extra={"context": context}, stacklevel=2)


def log_info(logger: Logger, msg: str, **context):
    logger.info(msg, extra={"context": context}, stacklevel=2)


def log_warn(logger: Logger, msg: str, **context):
    logger.warning(msg, extra={"context": context}, stacklevel=2)


def log_error(logger: Logger, msg: str, **context):
    logger.error(msg, extra={"context": context}, stacklevel=2)


def log_exception(logger: Logger, msg: str, **context):
    logger.exception(msg, extra={"context": context}, stacklevel=2)
