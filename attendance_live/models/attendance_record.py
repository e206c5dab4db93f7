import enum

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Boolean, Text, Enum, UniqueConstraint
from sqlalchemy.orm import relationship
from attendance_live.db.base import Base


class AttendanceStatus(str, enum.Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    LATE = "LATE"
    EXCUSED = "EXCUSED"


class AttendanceRecord(Base):
    """ 세션 내 학생 한 명의 출석 기록 (세션 종료 후에도 삭제하지 않음) """
    __tablename__ = "attendance_record"
    __table_args__ = (UniqueConstraint("session_id", "student_uid", name="uq_attendance_session_student"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String(32), ForeignKey("lesson_session.id"), nullable=False, index=True)
    student_uid = Column(String(128), ForeignKey("student.uid"), nullable=False)
    status = Column(Enum(AttendanceStatus, native_enum=False, length=16), nullable=False, default=AttendanceStatus.ABSENT)
    grade = Column(Integer, nullable=True)  # 1~5
    work_summary = Column(Text, nullable=True)
    comment = Column(Text, nullable=True)  # 학부모에게 전달할 코멘트
    is_enrolled = Column(Boolean, nullable=False, default=True)  # False = 명단 외 게스트 체크인
    marked_at = Column(DateTime, nullable=True)
    marked_by_mentor_id = Column(Integer, ForeignKey("mentor.id"), nullable=True)  # NULL = 학생 본인 스캔

    session = relationship("LessonSession", back_populates="records")
    student = relationship("Student")
