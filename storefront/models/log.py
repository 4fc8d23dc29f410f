from sqlalchemy import Column, Integer, String, DateTime, JSON, func
from storefront.database import Base

# Audit trail of stock, reservation and settlement mutations
class Log(Base):
    __tablename__ = "logs"

    id = Column(Integer, primary_key=True, index=True)

    # Event timestamp and core action details
    ts = Column(DateTime, server_default=func.now(), index=True)
    actor = Column(String(64), nullable=True) # "system", "provider" or "admin:<sub>"
    request_id = Column(String(64), index=True, nullable=True)
    action = Column(String(50), index=True)
    resource = Column(String(50), index=True)
    status = Column(String(20), index=True)
    ip = Column(String(64), nullable=True)

    # JSON container for flexible context data
    meta = Column(JSON, nullable=True)
