from .service import NO_ANSWER, CycleStats, Reconciler, SettlementNotice, log_receipt

__all__ = ["Reconciler", "SettlementNotice", "CycleStats", "NO_ANSWER", "log_receipt"]
