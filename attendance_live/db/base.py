from sqlalchemy.orm import declarative_base

Base = declarative_base()
import attendance_live.models.mentor
import attendance_live.models.student
import attendance_live.models.kruzhok
import attendance_live.models.club_class
import attendance_live.models.enrollment
import attendance_live.models.lesson_session
import attendance_live.models.attendance_record
