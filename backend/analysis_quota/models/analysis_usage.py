from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from analysis_quota.core.database import Base


class AnalysisUsage(Base):
    __tablename__ = "analysis_usage"
    # One counter row per user and billing period; the ledger's atomic upsert relies on it.
    __table_args__ = (
        UniqueConstraint("user_id", "period_start", name="uq_analysis_usage_user_period"),
        CheckConstraint("analysis_count >= 0", name="ck_analysis_usage_count_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    period_start = Column(DateTime(timezone=True), nullable=False)
    period_end = Column(DateTime(timezone=True), nullable=False)
    analysis_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
