from sqlalchemy import Column, DateTime, String
from sqlalchemy.sql import func

from analysis_quota.core.database import Base


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String, primary_key=True, index=True)
    email = Column(String, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
