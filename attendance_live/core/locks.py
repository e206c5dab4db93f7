import threading
from contextlib import contextmanager


class RowLockRegistry:
    """
    (session_id, student_uid) 단위의 락을 발급합니다.
    같은 학생 행에 대한 체크인/멘토 수정은 직렬화되고, 서로 다른 행은 병렬로 처리됩니다.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, str], threading.Lock] = {}

    def lock_for(self, session_id: str, student_uid: str) -> threading.Lock:
        key = (session_id, student_uid)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, session_id: str, student_uid: str):
        lock = self.lock_for(session_id, student_uid)
        with lock:
            yield

    def discard_session(self, session_id: str):
        # 종료된 세션의 락은 더 이상 필요 없음
        with self._guard:
            for key in [k for k in self._locks if k[0] == session_id]:
                del self._locks[key]


row_locks = RowLockRegistry()
