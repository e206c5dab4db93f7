from sqlalchemy import Column, Integer, String, ForeignKey
from sqlalchemy.orm import relationship
from attendance_live.db.base import Base

class Kruzhok(Base):
    """ 동아리/프로그램 (kruzhok). 여러 개의 반(ClubClass)을 가짐 """
    __tablename__ = "kruzhok"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    owner_id = Column(Integer, ForeignKey("mentor.id"), nullable=True)

    owner = relationship("Mentor", backref="owned_kruzhoks")
