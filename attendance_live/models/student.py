from sqlalchemy import Column, String
from attendance_live.db.base import Base

class Student(Base):
    __tablename__ = "student"

    uid = Column(String(128), primary_key=True, index=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
