"""Settlement reconciliation."""
from .engine import ReconciliationEngine, parse_settlement_csv, settlement_to_csv
from .types import (
    Discrepancy,
    MockSettlement,
    MockSettlementRequest,
    ReconcileRequest,
    ReconciliationReportInfo,
    SettlementRecord,
)

__all__ = [
    "Discrepancy",
    "MockSettlement",
    "MockSettlementRequest",
    "ReconcileRequest",
    "ReconciliationEngine",
    "ReconciliationReportInfo",
    "SettlementRecord",
    "parse_settlement_csv",
    "settlement_to_csv",
]
