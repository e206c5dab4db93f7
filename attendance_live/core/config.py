import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./attendance.db")
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "jwt-secret")
    JWT_ALGORITHM = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 15))

    # 수업 세션 정책 (0이면 비활성화)
    SESSION_MAX_DURATION_MINUTES = int(os.getenv("SESSION_MAX_DURATION_MINUTES", 240))
    LATE_THRESHOLD_MINUTES = int(os.getenv("LATE_THRESHOLD_MINUTES", 0))
    DEFAULT_SESSION_TITLE = os.getenv("DEFAULT_SESSION_TITLE", "Live lesson")

    # QR 출석 크리덴셜
    # 기본 유효 시간은 최대 수업 시간과 같음 (0이면 시간 만료 없이 세션 종료 시점까지 유효)
    CREDENTIAL_SECRET_KEY = os.getenv("CREDENTIAL_SECRET_KEY") or JWT_SECRET_KEY
    CREDENTIAL_TTL_SECONDS = int(os.getenv("CREDENTIAL_TTL_SECONDS", SESSION_MAX_DURATION_MINUTES * 60))

    # 클라이언트 (스캐너 / 멘토 화면)
    API_BASE_URL = os.getenv("API_BASE_URL", "http://localhost:8000/api/v1")
    API_TIMEOUT_SECONDS = float(os.getenv("API_TIMEOUT_SECONDS", 10))
    ROSTER_POLL_INTERVAL_SECONDS = float(os.getenv("ROSTER_POLL_INTERVAL_SECONDS", 5))
    # 멘토 화면의 QR 재발급 주기 (0이면 재발급하지 않음)
    CREDENTIAL_REFRESH_SECONDS = float(os.getenv("CREDENTIAL_REFRESH_SECONDS", 45))
    CAMERA_SCAN_LIMIT = int(os.getenv("CAMERA_SCAN_LIMIT", 4))

settings = Settings()
