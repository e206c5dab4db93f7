import enum
import uuid

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Enum
from sqlalchemy.orm import relationship
from attendance_live.db.base import Base


class SessionStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    LIVE = "LIVE"
    ENDED = "ENDED"


class LessonSession(Base):
    __tablename__ = "lesson_session"

    id = Column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    mentor_id = Column(Integer, ForeignKey("mentor.id"), nullable=False, index=True)
    class_id = Column(Integer, ForeignKey("club_class.id"), nullable=True, index=True)  # ad-hoc 수업이면 NULL
    kruzhok_id = Column(Integer, ForeignKey("kruzhok.id"), nullable=False)
    title = Column(String(255), nullable=False)
    status = Column(Enum(SessionStatus, native_enum=False, length=16), nullable=False, default=SessionStatus.SCHEDULED)

    scheduled_at = Column(DateTime, nullable=False)
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    duration_minutes = Column(Integer, nullable=True)

    # 현재 유효한 QR 크리덴셜의 jti (세션당 하나, 종료/재발급 시 교체)
    credential_jti = Column(String(64), nullable=True)
    credential_issued_at = Column(DateTime, nullable=True)

    club_class = relationship("ClubClass")
    records = relationship("AttendanceRecord", back_populates="session", order_by="AttendanceRecord.id")
