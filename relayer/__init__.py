"""Relay admission: instruction validation, co-signing and status lookup."""

from .admission import AdmissionGate
from .status import is_failed, is_fast_success, is_settled, query_status
from .validator import TransferIntent, check_instruction_count, validate_instructions

__all__ = [
    "AdmissionGate",
    "TransferIntent",
    "check_instruction_count",
    "validate_instructions",
    "query_status",
    "is_fast_success",
    "is_settled",
    "is_failed",
]
