import logging

logger = logging.getLogger(__name__)


def execute(raw_command: str, container):
    latest = getattr(container.ledger, "latest_recency_marker", None)
    if latest is None:
        logger.warning("Ledger %s does not issue recency markers", type(container.ledger).__name__)
        return "ERROR: Recency markers unavailable\r\n"
    marker, expiry_height = latest()
    return f"MARKER: {marker} {expiry_height}\r\n"
