from contextvars import ContextVar
from typing import Optional

# Read by the logging setup to tag log lines with the current request or task
request_id_context: ContextVar[Optional[str]] = ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    return request_id_context.get()


def set_request_id(request_id: str) -> None:
    request_id_context.set(request_id)
