from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from attendance_live.core.config import settings
from attendance_live.db.base import Base

connect_args = {"check_same_thread": False} if settings.DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(settings.DATABASE_URL, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_models():
    Base.metadata.create_all(bind=engine)
