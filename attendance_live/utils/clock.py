import time
from datetime import datetime


def utcnow() -> datetime:
    # DB 에는 naive UTC 로 저장
    return datetime.utcnow()


def epoch_ms() -> int:
    return int(time.time() * 1000)
