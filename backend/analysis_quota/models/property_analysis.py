from sqlalchemy import JSON, Column, DateTime, Integer, String
from sqlalchemy.sql import func

from analysis_quota.core.database import Base


class PropertyAnalysis(Base):
    __tablename__ = "property_analyses"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, nullable=False)
    property_address = Column(String, nullable=True)
    # Plan in effect when the gate approved this record, copied from the decision.
    plan_at_time = Column(String, nullable=False, default="free")
    inputs = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
