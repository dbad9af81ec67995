from datetime import datetime, timezone

from loguru import logger


def make_client_stats() -> dict:
    """
    Returns a fresh stats dictionary with zeroed counters.
    Every EventSourceClient calls this once in __init__.
    Keys: events_received, retryable_responses, reconnect_count,
          bytes_received, last_event_at, connected_at.
    """
    return {
        "events_received": 0,
        "retryable_responses": 0,
        "reconnect_count": 0,
        "bytes_received": 0,
        "last_event_at": None,
        "connected_at": None,
    }


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_connection(event: str, path: str | None, extra: dict | None = None, level: str = "INFO") -> None:
    """
    Single structured log entry for a connection lifecycle step.
    Writes: protocol, event, path, and any extra fields as key=value pairs.
    """
    log_str = f"protocol=sse event={event} path={path}"
    for k, v in (extra or {}).items():
        log_str += f" {k}={v}"
    logger.log(level, log_str)
