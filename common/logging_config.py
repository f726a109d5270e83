import logging
from typing import Any, Optional

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    # stripe logs every request at INFO
    logging.getLogger("stripe").setLevel(logging.WARNING)


def build_log_context(
    *,
    user_id: Optional[str] = None,
    role: Optional[str] = None,
    connection_id: Optional[str] = None,
    lead_id: Optional[str] = None,
    event_type: Optional[str] = None,
) -> dict[str, Any]:
    """Return a log context dict without empty keys (for ``extra=``)."""
    context: dict[str, Any] = {}
    if user_id:
        context["user_id"] = user_id
    if role:
        context["role"] = role
    if connection_id:
        context["connection_id"] = connection_id
    if lead_id:
        context["lead_id"] = lead_id
    if event_type:
        context["event_type"] = event_type
    return context
