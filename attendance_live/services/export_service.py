import io

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from sqlalchemy.orm import Session

from attendance_live.services.roster_service import get_session_state

EXPORT_HEADERS = ("Student", "Email", "Status", "Grade", "Activity", "Comment", "Guest", "MarkedAt")
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def build_roster_workbook(db: Session, session_id: str, mentor_id: int) -> io.BytesIO:
    """ 세션 출석부를 .xlsx 로 내보냅니다 """
    state = get_session_state(db, session_id, mentor_id)

    wb = Workbook()
    ws = wb.active
    ws.title = "Lesson"
    ws.append(list(EXPORT_HEADERS))
    for cell in ws[1]:
        cell.font = Font(bold=True)

    for row in state.rows:
        ws.append([
            row.student.name or row.student_id,
            row.student.email or "",
            row.status.value,
            row.grade if row.grade is not None else "",
            row.work_summary or "",
            row.comment or "",
            "" if row.is_enrolled else "yes",
            row.marked_at.strftime("%Y-%m-%d %H:%M:%S") if row.marked_at else "",
        ])

    widths = (28, 30, 12, 8, 40, 40, 8, 20)
    for col_idx, width in enumerate(widths, start=1):
        ws.column_dimensions[get_column_letter(col_idx)].width = width
    ws.freeze_panes = "A2"

    book_io = io.BytesIO()
    wb.save(book_io)
    book_io.seek(0)
    return book_io
