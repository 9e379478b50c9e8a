"""Settlement, discrepancy and report models."""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from payment_orchestrator.core.enums import DiscrepancyResolution, DiscrepancyType, ReportStatus


class SettlementRecord(BaseModel):
    """One line of a provider settlement file."""

    transaction_id: str
    amount: int
    currency: str
    status: str
    provider_ref: Optional[str] = None
    settled_at: Optional[str] = None


class MockSettlementRequest(BaseModel):
    merchant_id: str
    provider_id: uuid.UUID
    from_date: datetime
    to_date: datetime
    format: Literal["json", "csv"] = "json"
    introduce_discrepancies: bool = False


class MockSettlement(BaseModel):
    records: List[SettlementRecord]
    csv: Optional[str] = None


class ReconcileRequest(BaseModel):
    merchant_id: str
    provider_id: uuid.UUID
    from_date: datetime
    to_date: datetime
    settlement_data: List[SettlementRecord] = Field(default_factory=list)


class Discrepancy(BaseModel):
    """Mismatch between a settlement record and the local transaction."""

    id: str
    transaction_id: str
    type: DiscrepancyType
    provider_amount: Optional[int] = None
    local_amount: Optional[int] = None
    provider_status: Optional[str] = None
    local_status: Optional[str] = None
    description: str
    resolution: Optional[DiscrepancyResolution] = None
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None

    @property
    def is_resolved(self) -> bool:
        return self.resolution is not None


class ReconciliationReportInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    merchant_id: str
    provider_id: Optional[uuid.UUID] = None
    status: ReportStatus
    period_start: datetime
    period_end: datetime
    total_transactions: int
    matched_transactions: int
    unmatched_transactions: int
    discrepancies: List[Discrepancy] = Field(default_factory=list)
    summary: Dict[str, Any] = Field(default_factory=dict)
    generated_at: datetime
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    version: int
    created_at: datetime

    @computed_field
    @property
    def discrepancy_count(self) -> int:
        return len(self.discrepancies)
