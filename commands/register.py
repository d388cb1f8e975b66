import logging
import re

logger = logging.getLogger(__name__)

_IDENTITY_RE = re.compile(r"^[0-9a-f]{96}$")


def execute(raw_command: str, container):
    parts = raw_command.split()
    if len(parts) not in (2, 3):
        return "ERROR: Usage: register <identity> [noncompliant]\r\n"
    if not container.settings.registry.open_registration:
        return "ERROR: Registration is closed\r\n"

    identity = parts[1].lower()
    if not _IDENTITY_RE.match(identity):
        return "ERROR: Identity must be a 96-character hex public key\r\n"

    compliant = True
    if len(parts) == 3:
        if parts[2].lower() != "noncompliant":
            return "ERROR: Usage: register <identity> [noncompliant]\r\n"
        compliant = False

    container.registry.register(identity, compliant=compliant)
    logger.info("Registered %s... via command (compliant=%s)", identity[:16], compliant)
    return f"REGISTERED: {identity} compliant={str(compliant).lower()}\r\n"
