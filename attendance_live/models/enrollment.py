from sqlalchemy import Column, Integer, ForeignKey, TIMESTAMP, func, String, UniqueConstraint
from sqlalchemy.orm import relationship
from attendance_live.db.base import Base

class ClassEnrollment(Base):
    __tablename__ = "class_enrollment"
    __table_args__ = (UniqueConstraint("class_id", "student_uid", name="uq_class_enrollment"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    class_id = Column(Integer, ForeignKey("club_class.id"), nullable=False)
    student_uid = Column(String(128), ForeignKey("student.uid"), nullable=False)
    status = Column(String(16), nullable=False, default="active")  # active / inactive
    enrolled_at = Column(TIMESTAMP, server_default=func.now())

    student = relationship("Student")
