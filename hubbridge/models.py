from sqlalchemy import Column, String, JSON, TIMESTAMP
from sqlalchemy.sql import func
from .db import Base

class Audit(Base):
    __tablename__ = "audit_log"
    id = Column(String, primary_key=True)
    ts = Column(TIMESTAMP, server_default=func.now())
    actor = Column(String)
    action = Column(String)       # "<domain>.<service>"
    target_type = Column(String)  # entity | area
    target_id = Column(String)
    payload = Column(JSON)
    outcome = Column(String)      # ok | http_<status> | transport_error
