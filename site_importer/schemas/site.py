"""Site schemas: normalized upload records and API responses."""
from datetime import date, datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class NormalizedRecord(BaseModel):
    """One transformed spreadsheet row, keyed by its natural key ``site_id``."""

    site_id: str = Field(..., min_length=1, description="Natural key (upsert conflict target)")
    exp_date: Optional[date] = None
    total_rental: float = 0.0
    total_payment_to_pay: float = 0.0
    deposit: float = 0.0
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Pass-through columns")

    def to_row(self, job_id: str) -> Dict[str, Any]:
        """Column values for an upsert into the sites table."""
        return {
            "site_id": self.site_id,
            "exp_date": self.exp_date,
            "total_rental": self.total_rental,
            "total_payment_to_pay": self.total_payment_to_pay,
            "deposit": self.deposit,
            "raw_data": self.attributes,
            "upload_job_id": job_id,
            "cancelled": False,
        }


class SiteResponse(BaseModel):
    """Schema for site responses."""

    id: int
    site_id: str
    exp_date: Optional[date] = None
    exp_date_display: Optional[str] = None
    days_until_expiration: Optional[int] = None
    total_rental: float
    total_payment_to_pay: float
    deposit: float
    raw_data: Optional[Dict[str, Any]] = None
    upload_job_id: Optional[str] = None
    cancelled: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class SiteListResponse(BaseModel):
    """Schema for paginated site list responses."""

    items: list[SiteResponse]
    total: int
    page: int
    page_size: int
    pages: int
