from sqlalchemy import Column, Integer, String
from attendance_live.db.base import Base

class Mentor(Base):
    __tablename__ = "mentor"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
