from sqlalchemy import Column, Integer, String, DateTime
from fleetguard.core.probes.results import utcnow
from fleetguard.database import Base


class Website(Base):
    """Registered site; owned by the dashboard, read here only to build scan targets"""
    __tablename__ = "websites"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    url = Column(String(2048), nullable=False)
    management_api_key = Column(String(255))
    created_at = Column(DateTime, default=utcnow)
