from sqlalchemy import Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship
from attendance_live.db.base import Base

class ClubClass(Base):
    __tablename__ = "club_class"

    id = Column(Integer, primary_key=True, index=True)
    kruzhok_id = Column(Integer, ForeignKey("kruzhok.id"), nullable=False)
    mentor_id = Column(Integer, ForeignKey("mentor.id"), nullable=True)
    name = Column(String(255), nullable=False)
    # 수업 요일/시간 예: '월요일 14:00~15:30'
    schedule = Column(String(100), nullable=True)

    kruzhok = relationship("Kruzhok", backref="classes")
    mentor = relationship("Mentor", backref="classes")
