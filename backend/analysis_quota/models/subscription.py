from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.sql import func

from analysis_quota.core.database import Base


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, index=True, unique=True, nullable=False)
    plan = Column(String, index=True, nullable=False, default="free")
    status = Column(String, index=True, nullable=False, default="active")
    current_period_start = Column(DateTime(timezone=True), nullable=False)
    current_period_end = Column(DateTime(timezone=True), nullable=False)
    provider = Column(String, index=True, nullable=True)
    provider_customer_id = Column(String, index=True, nullable=True)
    provider_subscription_id = Column(String, index=True, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
