from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from sqlalchemy.orm import Session

from attendance_live.core.config import settings
from attendance_live.dependencies.db import get_db
from attendance_live.models.mentor import Mentor
from attendance_live.models.student import Student

security = HTTPBearer()

credentials_exception = HTTPException(
    status_code=status.HTTP_401_UNAUTHORIZED,
    detail="Could not validate credentials",
    headers={"WWW-Authenticate": "Bearer"},
)


def _decode_subject(token: str, expected_role: str) -> str:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise credentials_exception
    subject = payload.get("sub")
    if subject is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")
    if payload.get("role") != expected_role:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"{expected_role} 계정만 사용할 수 있습니다.")
    return subject


def get_current_mentor_id(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> int:
    mentor_id = _decode_subject(credentials.credentials, "mentor")
    try:
        return int(mentor_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload")


def get_current_student_uid(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> str:
    return _decode_subject(credentials.credentials, "student")


def get_current_mentor(
    mentor_id: int = Depends(get_current_mentor_id),
    db: Session = Depends(get_db),
) -> Mentor:
    mentor = db.query(Mentor).filter(Mentor.id == mentor_id).first()
    if not mentor:
        # 토큰은 유효하지만, 해당 id의 멘토가 DB에 없을 때
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Mentor not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return mentor


def get_current_student(
    student_uid: str = Depends(get_current_student_uid),
    db: Session = Depends(get_db),
) -> Student:
    student = db.query(Student).filter(Student.uid == student_uid).first()
    if not student:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return student
