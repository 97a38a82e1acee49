from sqlalchemy import Column, String, Float, Text, Enum, DateTime
from datetime import datetime, timezone
import uuid
from config.database import Base


def _utcnow():
    return datetime.now(timezone.utc)


class Report(Base):
    __tablename__ = "reports"

    id            = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()), index=True)
    reporter_id   = Column(String(64), nullable=False, index=True)

    latitude      = Column(Float, nullable=False)
    longitude     = Column(Float, nullable=False)
    location_name = Column(String(255), nullable=False)
    description   = Column(Text, nullable=False)
    image_url     = Column(String, nullable=True)
    status        = Column(
        Enum("pending", "in_progress", "completed", name="report_status"),
        nullable=False,
        default="pending",
    )

    created_at    = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    updated_at    = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
