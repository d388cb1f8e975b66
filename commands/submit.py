import base64
import binascii
import logging

from errors import RejectReason, TransactionRejected

logger = logging.getLogger(__name__)


def execute(raw_command: str, container):
    parts = raw_command.split()
    if len(parts) != 3:
        return "ERROR: Usage: submit <base64-transaction> <expiry-height>\r\n"

    try:
        raw_tx = base64.b64decode(parts[1], validate=True)
    except (binascii.Error, ValueError):
        return f"FAILURE: {RejectReason.MALFORMED_ENCODING.value}: Transaction is not valid base64\r\n"

    try:
        expiry_height = int(parts[2])
    except ValueError:
        return f"FAILURE: {RejectReason.INVALID_EXPIRY_HEIGHT.value}: Expiry height must be an integer\r\n"

    try:
        record_id = container.admission.admit(raw_tx, expiry_height)
    except TransactionRejected as exc:
        logger.info("Submission rejected: %s", exc)
        return f"FAILURE: {exc}\r\n"

    return f"ACCEPTED: {record_id}\r\n"
