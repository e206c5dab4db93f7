import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from attendance_live.main import app
from attendance_live.db.base import Base
from attendance_live.dependencies.db import get_db
from attendance_live.models.club_class import ClubClass
from attendance_live.models.enrollment import ClassEnrollment
from attendance_live.models.kruzhok import Kruzhok
from attendance_live.models.mentor import Mentor
from attendance_live.models.student import Student
from attendance_live.services.token_service import create_mentor_access_token, create_student_access_token

# 테스트용 인메모리 DB (모든 커넥션이 같은 DB 를 보도록 StaticPool)
engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

MENTOR_ID = 1
OTHER_MENTOR_ID = 2
KRUZHOK_ID = 10
CLASS_ID = 100
ENROLLED_UIDS = ["student-a", "student-b", "student-c"]
GUEST_UID = "student-guest"


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def seed_club(db):
    """
    멘토 2명, 동아리 1개, 반 1개, 수강생 3명 + 명단 외 학생 1명
    """
    db.add_all([
        Mentor(id=MENTOR_ID, name="담당 멘토", email="mentor@example.com"),
        Mentor(id=OTHER_MENTOR_ID, name="다른 멘토", email="other@example.com"),
    ])
    db.add(Kruzhok(id=KRUZHOK_ID, title="로봇 동아리", owner_id=MENTOR_ID))
    db.add(ClubClass(id=CLASS_ID, kruzhok_id=KRUZHOK_ID, mentor_id=MENTOR_ID, name="월요일 반"))
    for idx, uid in enumerate(ENROLLED_UIDS):
        db.add(Student(uid=uid, name=f"학생{idx}", email=f"{uid}@example.com"))
    db.add(Student(uid=GUEST_UID, name="게스트", email=f"{GUEST_UID}@example.com"))
    db.flush()
    for uid in ENROLLED_UIDS:
        db.add(ClassEnrollment(class_id=CLASS_ID, student_uid=uid, status="active"))
    db.commit()


@pytest.fixture
def seeded(db):
    seed_club(db)
    return db


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def mentor_headers():
    return auth_header(create_mentor_access_token(MENTOR_ID))


@pytest.fixture
def other_mentor_headers():
    return auth_header(create_mentor_access_token(OTHER_MENTOR_ID))


@pytest.fixture
def student_headers():
    return {uid: auth_header(create_student_access_token(uid)) for uid in ENROLLED_UIDS + [GUEST_UID]}


@pytest.fixture
def live_session(client, seeded, mentor_headers):
    """ 시작된 수업: {"sessionId", "credential", "startedAt", "serverTime"} """
    response = client.post("/api/v1/session/start", headers=mentor_headers, json={"classId": CLASS_ID})
    assert response.status_code == 200, response.text
    return response.json()


def _rows_by_student(client, session_id: str, headers: dict) -> dict:
    response = client.get(f"/api/v1/session/{session_id}/state", headers=headers)
    assert response.status_code == 200, response.text
    return {row["studentId"]: row for row in response.json()["rows"]}


@pytest.fixture
def rows_by_student():
    """ GET /state 결과를 {studentId: row} 로 """
    return _rows_by_student
