"""Site model, the target of chunked upserts."""
from sqlalchemy import JSON, Boolean, Column, Date, DateTime, Integer, Numeric, String

from site_importer.database import Base, utcnow


class Site(Base):
    """One rental site, keyed by its spreadsheet SITE ID."""

    __tablename__ = "sites"

    id = Column(Integer, primary_key=True, index=True)
    site_id = Column(String(255), nullable=False, unique=True)
    exp_date = Column(Date, nullable=True)
    total_rental = Column(Numeric(15, 2, asdecimal=False), default=0, nullable=False)
    total_payment_to_pay = Column(Numeric(15, 2, asdecimal=False), default=0, nullable=False)
    deposit = Column(Numeric(15, 2, asdecimal=False), default=0, nullable=False)
    raw_data = Column(JSON, nullable=True)
    upload_job_id = Column(String(36), nullable=True, index=True)
    cancelled = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Site(id={self.id}, site_id='{self.site_id}')>"
