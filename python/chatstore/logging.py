"""structlog setup for the store and its worker.

Every log line is one JSON object (console-rendered in local dev) carrying the
event name, level, logger name, timestamp and whatever call context is bound:
request_id, user_id, session_id, conversation_id, task_name, task_id.

Store code only ever does:

    logger = get_logger(__name__)
    logger.info("conversation_created", conversation_id=cid)

The embedding process calls configure_logging() once. Route handlers bind
identity with set_request_context(); Celery tasks call configure_task_logging()
on entry and clear_task_context() on exit.
"""

import logging
import sys
from contextvars import ContextVar

import structlog

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)
session_id_var: ContextVar[str | None] = ContextVar("session_id", default=None)
conversation_id_var: ContextVar[str | None] = ContextVar("conversation_id", default=None)
task_name_var: ContextVar[str | None] = ContextVar("task_name", default=None)
task_id_var: ContextVar[str | None] = ContextVar("task_id", default=None)

_CONTEXT_VARS = {
    "request_id": request_id_var,
    "user_id": user_id_var,
    "session_id": session_id_var,
    "conversation_id": conversation_id_var,
    "task_name": task_name_var,
    "task_id": task_id_var,
}

# Third-party loggers that are too chatty at INFO
_QUIET_LOGGERS = ("sqlalchemy.engine", "celery")


def add_request_context(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """structlog processor: copy bound context vars onto the event.

    Unset values are skipped and keys already on the event win.
    """
    for key, var in _CONTEXT_VARS.items():
        value = var.get()
        if value and key not in event_dict:
            event_dict[key] = value
    return event_dict


def _stdlib_handler(pre_chain: list, json_format: bool) -> logging.Handler:
    renderer = structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )
    return handler


def configure_logging(json_format: bool = True, level: int = logging.INFO) -> None:
    """Route structlog and stdlib logging through one formatter on stdout.

    Args:
        json_format: JSON lines when True, human-readable console output otherwise.
        level: Root log level.
    """
    pre_chain = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_request_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(_stdlib_handler(pre_chain, json_format))
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_context(
    request_id: str | None,
    user_id: str | None = None,
    session_id: str | None = None,
) -> None:
    """Bind the caller's identity once the route layer has resolved it.

    user_id and session_id are only overwritten when given.
    """
    request_id_var.set(request_id)
    if user_id is not None:
        user_id_var.set(user_id)
    if session_id is not None:
        session_id_var.set(session_id)


def set_conversation_id(conversation_id: str | None) -> None:
    conversation_id_var.set(conversation_id)


def clear_request_context() -> None:
    for var in (request_id_var, user_id_var, session_id_var, conversation_id_var):
        var.set(None)


def get_request_id() -> str | None:
    return request_id_var.get()


def configure_task_logging(
    request_id: str | None = None,
    task_name: str | None = None,
    task_id: str | None = None,
) -> None:
    """Bind Celery task context; call first thing in every task body.

    Args:
        request_id: Correlation ID passed by whoever enqueued the task.
        task_name: Registered task name.
        task_id: Celery task id (self.request.id).
    """
    request_id_var.set(request_id)
    task_name_var.set(task_name)
    task_id_var.set(task_id)


def clear_task_context() -> None:
    for var in (request_id_var, task_name_var, task_id_var, user_id_var):
        var.set(None)
