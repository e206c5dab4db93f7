"""
멘토 화면의 실시간 출석부.

- 주기적으로 /state 를 가져와 스냅샷을 통째로 교체 (행 단위 병합 없음)
- 수정은 화면에 먼저 반영하고 서버로 보낸 뒤, 실패하면 알리고 바로 다시 가져옴
- 경과 시간은 서버 시각 기준 (클라이언트 시계 오차 보정)
- QR 크리덴셜은 만료 전에 주기적으로 재발급
"""

import argparse
import logging
import os
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Optional

from attendance_live.core.config import settings
from attendance_live.client.api import ApiClient
from attendance_live.client.exceptions import AttendanceClientError

logger = logging.getLogger(__name__)

# 파이썬 필드명 → 응답 JSON 키
_ROW_KEYS = {"status": "status", "grade": "grade", "work_summary": "workSummary", "comment": "comment"}


def _now_ms() -> int:
    return int(time.time() * 1000)


def _parse_ms(value) -> Optional[int]:
    """ ISO 문자열(타임존 없으면 UTC) → epoch ms """
    if not value:
        return None
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


@dataclass(frozen=True)
class RosterSnapshot:
    session: dict
    rows: tuple = ()
    server_time: int = 0
    # 서버 시각 - 로컬 시각 (ms)
    server_offset_ms: int = 0
    fetched_at: int = field(default_factory=_now_ms)

    @classmethod
    def from_state(cls, data: dict, received_at: Optional[int] = None) -> "RosterSnapshot":
        received_at = _now_ms() if received_at is None else received_at
        server_time = int(data.get("serverTime") or received_at)
        return cls(
            session=dict(data.get("session") or {}),
            rows=tuple(dict(row) for row in data.get("rows") or ()),
            server_time=server_time,
            server_offset_ms=server_time - received_at,
            fetched_at=received_at,
        )

    @property
    def status(self) -> Optional[str]:
        return self.session.get("status")

    def row(self, student_id: str) -> Optional[dict]:
        for row in self.rows:
            if row.get("studentId") == student_id:
                return row
        return None


def apply_edit(snapshot: RosterSnapshot, student_id: str, fields: dict) -> RosterSnapshot:
    """ 한 학생 행에 수정 내용을 덮어쓴 새 스냅샷 (원본은 그대로) """
    patch = {_ROW_KEYS.get(name, name): value for name, value in fields.items()}
    rows = tuple({**row, **patch} if row.get("studentId") == student_id else row for row in snapshot.rows)
    return replace(snapshot, rows=rows)


def format_elapsed(elapsed_ms: int) -> str:
    total_seconds = max(0, elapsed_ms) // 1000
    return f"{total_seconds // 60:02d}:{total_seconds % 60:02d}"


class LiveRosterView:

    def __init__(self, api, session_id: str,
                 render: Optional[Callable[[RosterSnapshot], None]] = None,
                 notify: Optional[Callable[[AttendanceClientError], None]] = None,
                 poll_interval: Optional[float] = None,
                 credential_refresh_interval: Optional[float] = None,
                 executor: Optional[ThreadPoolExecutor] = None,
                 credential: Optional[str] = None):
        self.api = api
        self.session_id = session_id
        self._render = render
        self._notify = notify
        self.poll_interval = settings.ROSTER_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        # QR 은 만료되기 전에 주기적으로 재발급 (0이면 재발급하지 않음)
        self.credential_refresh_interval = (
            settings.CREDENTIAL_REFRESH_SECONDS if credential_refresh_interval is None else credential_refresh_interval
        )
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="roster-edit")
        self._owns_executor = executor is None

        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._poller: Optional[threading.Thread] = None
        self._last_rotation = 0.0

        self.snapshot: Optional[RosterSnapshot] = None
        # 수업 시작 응답의 크리덴셜로 시작해서 재발급할 때마다 교체
        self.credential: Optional[str] = credential

    @classmethod
    def from_started(cls, api, started: dict, **kwargs) -> "LiveRosterView":
        """ ApiClient.start_session() 응답으로 바로 화면을 만든다 """
        return cls(api, started["sessionId"], credential=started.get("credential"), **kwargs)

    # --- 스냅샷 ---

    def _replace(self, snapshot: RosterSnapshot):
        with self._lock:
            self.snapshot = snapshot
        if self._render:
            self._render(snapshot)

    def _report(self, error: AttendanceClientError):
        logger.warning(f"Roster sync error: {error}")
        if self._notify:
            self._notify(error)

    def refresh(self) -> Optional[RosterSnapshot]:
        try:
            data = self.api.get_state(self.session_id)
        except AttendanceClientError as exc:
            self._report(exc)
            return None
        snapshot = RosterSnapshot.from_state(data)
        self._replace(snapshot)
        return snapshot

    # --- 폴링 ---

    def start(self):
        if self._poller is not None:
            return
        self._stop.clear()
        self._last_rotation = time.monotonic()
        self._poller = threading.Thread(target=self._poll_loop, name=f"roster-{self.session_id}", daemon=True)
        self._poller.start()

    def _poll_loop(self):
        while not self._stop.is_set():
            snapshot = self.refresh()
            if snapshot is not None and snapshot.status == "ENDED":
                logger.info(f"Session {self.session_id} ended, polling stopped")
                break
            self._maybe_rotate_credential()
            self._stop.wait(self.poll_interval)

    def _maybe_rotate_credential(self):
        if not self.credential_refresh_interval:
            return
        if time.monotonic() - self._last_rotation < self.credential_refresh_interval:
            return
        self._last_rotation = time.monotonic()
        try:
            self.credential = self.api.rotate_credential(self.session_id)["credential"]
        except AttendanceClientError as exc:
            self._report(exc)

    # --- 수정 ---

    def _swap(self, change: Callable[[RosterSnapshot], RosterSnapshot]) -> Optional[RosterSnapshot]:
        """ 현재 스냅샷을 읽고 바꾸는 것을 한 번에 (그 사이에 폴링 결과가 끼어들지 않음) """
        with self._lock:
            if self.snapshot is None:
                return None
            snapshot = change(self.snapshot)
            self.snapshot = snapshot
        if self._render:
            self._render(snapshot)
        return snapshot

    def edit(self, student_id: str, **fields) -> Future:
        """
        화면에 먼저 반영하고 백그라운드로 저장.
        실패하면 수정 전 값으로 되돌리고 notify 후 즉시 다시 가져옴
        """
        undo = {}

        def optimistic(snapshot: RosterSnapshot) -> RosterSnapshot:
            row = snapshot.row(student_id)
            if row is not None:
                undo.update({name: row.get(_ROW_KEYS.get(name, name)) for name in fields})
            return apply_edit(snapshot, student_id, fields)

        self._swap(optimistic)
        return self._executor.submit(self._submit_edit, student_id, fields, undo or None)

    def _submit_edit(self, student_id: str, fields: dict, undo: Optional[dict] = None) -> Optional[dict]:
        try:
            return self.api.update_record(self.session_id, student_id, **fields)
        except AttendanceClientError as exc:
            if undo is not None:
                self._swap(lambda snapshot: apply_edit(snapshot, student_id, undo))
            self._report(exc)
            self.refresh()
            return None

    # --- 경과 시간 ---

    def elapsed_label(self, now_ms: Optional[int] = None) -> str:
        with self._lock:
            snapshot = self.snapshot
        if snapshot is None:
            return format_elapsed(0)
        started = _parse_ms(snapshot.session.get("startedAt"))
        if started is None:
            return format_elapsed(0)
        ended = _parse_ms(snapshot.session.get("endedAt"))
        server_now = ended if ended is not None else (_now_ms() if now_ms is None else now_ms) + snapshot.server_offset_ms
        return format_elapsed(server_now - started)

    def close(self):
        self._stop.set()
        if self._poller is not None:
            self._poller.join(timeout=self.poll_interval + 1)
            self._poller = None
        if self._owns_executor:
            self._executor.shutdown(wait=True)


def _print_snapshot(snapshot: RosterSnapshot):
    print(f"[{snapshot.status}] {len(snapshot.rows)} students")
    for row in snapshot.rows:
        grade = row.get("grade")
        print(f"  {row.get('studentId'):<24} {row.get('status'):<8} {'' if grade is None else grade}")


def parse_args(argv=None):
    p = argparse.ArgumentParser(description="Start or follow a live lesson roster")
    p.add_argument("--token", default=os.getenv("ATTENDANCE_TOKEN"), help="Mentor access token (default: $ATTENDANCE_TOKEN)")
    p.add_argument("--base-url", default=None, help="API base URL (default: API_BASE_URL setting)")
    target = p.add_mutually_exclusive_group(required=True)
    target.add_argument("--session-id", help="Follow an already running session")
    target.add_argument("--class-id", type=int, help="Start a lesson for this class and follow it")
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    if not args.token:
        raise SystemExit("mentor access token is required (--token or $ATTENDANCE_TOKEN)")
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

    api = ApiClient(args.token, base_url=args.base_url)
    if args.class_id is not None:
        view = LiveRosterView.from_started(api, api.start_session(class_id=args.class_id), render=_print_snapshot)
    else:
        view = LiveRosterView(api, args.session_id, render=_print_snapshot)
    print(f"session: {view.session_id}")
    view.start()
    try:
        while view._poller is not None and view._poller.is_alive():
            view._poller.join(timeout=1)
            print(f"elapsed {view.elapsed_label()}")
    except KeyboardInterrupt:
        pass
    finally:
        view.close()


if __name__ == "__main__":
    main()
