"""
Structured logging for the voicedesk media service.

structlog events are rendered through the stdlib ``ProcessorFormatter`` so
aiohttp/websockets records and our own events share one output stream,
JSON by default or colorized console output for local runs.

Every event carries the service name, the emitting component and, inside a
call, the stream id as ``correlation_id``. Vendor credentials are redacted
and caller phone numbers are masked before rendering.
"""

import contextvars
import logging
import os
import sys
import time
import uuid
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler

import structlog
from structlog import dev as structlog_dev

# Stream id of the call being handled by the current task tree
correlation_id_var = contextvars.ContextVar('correlation_id', default=None)

SERVICE_NAME = 'voicedesk'

REDACTED = '***REDACTED***'

# Compared after lowercasing and dropping '_' / '-'
_SENSITIVE = frozenset({
    'apikey', 'apikeys', 'xiapikey',
    'token', 'accesstoken', 'authtoken', 'bearer',
    'password', 'passwd', 'pwd', 'pass',
    'authorization', 'auth',
    'credential', 'credentials', 'secret', 'secrets',
    'privatekey',
})

_CALLER_KEYS = frozenset({'caller_phone', 'phone', 'from_number'})

_NOISY_LOGGERS = ('websockets', 'aiohttp', 'aiohttp.access', 'asyncio')


def get_correlation_id():
    return correlation_id_var.get()


def set_correlation_id(value=None):
    """Bind a correlation id to this task and the tasks it creates from now on."""
    if value is None:
        value = str(uuid.uuid4())
    correlation_id_var.set(value)
    return value


def add_correlation_id(logger, method_name, event_dict):
    correlation_id = get_correlation_id()
    if correlation_id:
        event_dict.setdefault('correlation_id', correlation_id)
    return event_dict


def add_service_context(logger, method_name, event_dict):
    event_dict['service'] = SERVICE_NAME
    component = event_dict.get('logger')
    if not component:
        inner = getattr(logger, 'logger', None)
        component = getattr(inner, 'name', None) or getattr(logger, 'name', None) or 'unknown'
    event_dict['component'] = component
    return event_dict


def _is_sensitive_key(key) -> bool:
    normalized = str(key).lower().replace('_', '').replace('-', '')
    # Suffix match so "openai_api_key" hits but "passthrough" does not
    return any(normalized == item or normalized.endswith(item) for item in _SENSITIVE)


def _redact(value):
    if value is None or isinstance(value, bool) or value == '':
        return value
    if isinstance(value, str):
        return f"{value[:2]}{REDACTED}" if len(value) > 4 else REDACTED
    if isinstance(value, (list, tuple)):
        return [_redact(item) for item in value]
    if isinstance(value, dict):
        return {k: _redact(v) for k, v in value.items()}
    return REDACTED


def _scrub(value):
    if isinstance(value, dict):
        return {k: (_redact(v) if _is_sensitive_key(k) else _scrub(v)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_scrub(item) for item in value]
    return value


def sanitize_secrets(logger, method_name, event_dict):
    """
    Redact vendor credentials from an event.

    Adapter options and request headers carry the Deepgram, OpenAI and
    ElevenLabs keys; any key that looks like a credential is replaced while
    the rest of the event is left intact.
    """
    return _scrub(event_dict)


def mask_phone(value):
    """'+34600111222' -> '********1222'"""
    if not isinstance(value, str) or not value:
        return value
    digits = sum(ch.isdigit() for ch in value)
    if digits <= 4:
        return value
    keep = 4
    masked = []
    for ch in reversed(value):
        if ch.isdigit() and keep > 0:
            masked.append(ch)
            keep -= 1
        elif ch.isdigit():
            masked.append('*')
        else:
            masked.append(ch if keep > 0 else '*')
    return ''.join(reversed(masked))


def mask_caller_data(logger, method_name, event_dict):
    """Mask caller phone numbers, keeping the last four digits."""
    for key in _CALLER_KEYS:
        if key in event_dict:
            event_dict[key] = mask_phone(event_dict[key])
    return event_dict


@dataclass
class _LogSettings:
    level: str
    fmt: str
    color: bool
    to_file: bool
    file_path: str
    tracebacks: bool
    mask_callers: bool


def _env_flag(name, default):
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


def _resolve_settings(log_level, log_to_file, log_file_path) -> _LogSettings:
    """
    Environment overrides (optional):
      - LOG_LEVEL: debug|info|warning|error|critical
      - LOG_FORMAT: json|console (default: json)
      - LOG_COLOR: 0|1 (console only; default: 1)
      - LOG_TO_FILE / LOG_FILE_PATH
      - LOG_SHOW_TRACEBACKS: auto|always|never (auto = debug only)
      - LOG_MASK_CALLER_DATA: 0|1 (default: 1)
    """
    level = (os.getenv('LOG_LEVEL') or str(log_level or 'INFO')).upper()
    tb_mode = os.getenv('LOG_SHOW_TRACEBACKS', 'auto').strip().lower()
    if tb_mode in ('always', 'never'):
        tracebacks = tb_mode == 'always'
    else:
        tracebacks = level == 'DEBUG'
    return _LogSettings(
        level=level,
        fmt=os.getenv('LOG_FORMAT', 'json').strip().lower(),
        color=_env_flag('LOG_COLOR', True),
        to_file=_env_flag('LOG_TO_FILE', bool(log_to_file)),
        file_path=os.getenv('LOG_FILE_PATH', log_file_path),
        tracebacks=tracebacks,
        mask_callers=_env_flag('LOG_MASK_CALLER_DATA', True),
    )


def _file_handler(path, service_name, formatter):
    ts = time.strftime('%Y%m%d-%H%M%S')
    if path.endswith(os.sep) or os.path.isdir(path):
        path = os.path.join(path, f"{service_name}-{ts}.log")
    else:
        path = path.replace('{ts}', ts)
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=5)
    handler.setFormatter(formatter)
    return handler, path


def configure_logging(log_level="INFO", log_to_file=False, log_file_path="voicedesk.log", service_name=SERVICE_NAME):
    """Install structlog and the root handlers. Safe to call again (handlers are replaced)."""
    settings = _resolve_settings(log_level, log_to_file, log_file_path)

    def drop_tracebacks(logger, method_name, event_dict):
        if not settings.tracebacks:
            event_dict.pop('exc_info', None)
        return event_dict

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_service_context,
        add_correlation_id,
        sanitize_secrets,
    ]
    if settings.mask_callers:
        processors.append(mask_caller_data)
    processors += [
        drop_tracebacks,
        structlog.processors.format_exc_info,
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]
    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if settings.fmt == 'console':
        renderer = structlog_dev.ConsoleRenderer(colors=settings.color)
    else:
        renderer = structlog.processors.JSONRenderer()
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=[
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
        ],
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(getattr(logging, settings.level, logging.INFO))
    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root_logger.addHandler(console)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if settings.to_file:
        try:
            handler, path = _file_handler(settings.file_path, service_name, formatter)
        except OSError as e:
            get_logger(__name__).warning(
                "File logging disabled; continuing with console only",
                error=str(e),
                configured_path=settings.file_path,
            )
        else:
            root_logger.addHandler(handler)
            get_logger(__name__).info("File logging configured", log_file_path=path)


def get_logger(name: str):
    return structlog.get_logger(name)
