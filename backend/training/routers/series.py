# backend/training/routers/series.py
import io
from typing import List

import openpyxl
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from .. import schemas
from ..date_utils import day_name
from ..deps import domain_errors, get_engine
from ..engine import TrainingEngine

router = APIRouter(prefix="/series", tags=["Series"])
catalog_router = APIRouter(prefix="/course-types", tags=["Catalog"])

ATTENDANCE_MARKS = {"present": "P", "late": "L", "absent": "A", "excused": "E"}


# =========================================================
# CATALOG
# =========================================================
@catalog_router.get("", response_model=List[schemas.CourseTypeOut])
@catalog_router.get("/", response_model=List[schemas.CourseTypeOut])
def list_course_types(active_only: bool = Query(False), engine: TrainingEngine = Depends(get_engine)):
    return engine.list_course_types(active_only)


@catalog_router.put("/{course_type_id}", response_model=schemas.CourseTypeOut)
def save_course_type(course_type_id: str, payload: schemas.CourseTypeIn, engine: TrainingEngine = Depends(get_engine)):
    payload = payload.model_copy(update={"id": course_type_id})
    with domain_errors():
        return engine.save_course_type(payload)


# =========================================================
# SERIES
# =========================================================
@router.post("", response_model=schemas.SeriesOut)
@router.post("/", response_model=schemas.SeriesOut)
def create_series(payload: schemas.SeriesCreate, engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        return engine.create_series(payload)


@router.get("/{series_id}", response_model=schemas.SeriesOut)
def get_series(series_id: int, engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        return engine.get_series(series_id)


@router.patch("/{series_id}", response_model=schemas.SeriesOut)
def update_series(series_id: int, payload: schemas.SeriesUpdate, engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        return engine.update_series(series_id, payload)


@router.get("/{series_id}/sessions", response_model=List[schemas.SessionOut])
def list_sessions(series_id: int, engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        return engine.get_series(series_id).sessions


@router.get("/{series_id}/enrollments", response_model=List[schemas.EnrollmentOut])
def list_enrollments(series_id: int, engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        return engine.list_enrollments(series_id)


@router.post("/{series_id}/regenerate", response_model=schemas.SeriesOut)
def regenerate_sessions(series_id: int, engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        return engine.regenerate_sessions(series_id)


@router.post("/{series_id}/status", response_model=schemas.SeriesOut)
def set_status(series_id: int, status: schemas.SeriesStatus = Query(...), engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        return engine.set_series_status(series_id, status)


# =========================================================
# EXPORT CALENDAR + ROSTER
# =========================================================
@router.get("/{series_id}/export.xlsx")
def export_series_xlsx(series_id: int, engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        series, roster = engine.roster(series_id)

    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = "Calendar"

    ws.append([series.series_name])
    ws["A1"].font = Font(bold=True)
    ws.append(["Day", day_name(series.day_of_week), "Time", f"{series.start_time}-{series.end_time}"])
    ws.append([])
    ws.append(["Session", "Date", "Start", "End", "Status", "Enrolled"])
    for s in series.sessions:
        ws.append([s.session_number, s.date.isoformat(), s.start_time, s.end_time, s.status, s.enrolled_count])

    ws2 = wb.create_sheet("Roster")
    header = ["Pet", "Owner", "Status", "Progress %"]
    for s in series.sessions:
        header.append(f"S{s.session_number}")
    ws2.append(header)
    for cell in ws2[1]:
        cell.font = Font(bold=True)

    for enrollment, pet_name, marks in roster:
        row = [pet_name, enrollment.owner_id, enrollment.status, enrollment.progress]
        for s in series.sessions:
            row.append(ATTENDANCE_MARKS.get(marks.get(s.session_number), ""))
        ws2.append(row)

    for sheet in (ws, ws2):
        for i in range(1, sheet.max_column + 1):
            sheet.column_dimensions[get_column_letter(i)].width = 12

    stream = io.BytesIO()
    wb.save(stream)
    stream.seek(0)

    filename = f"series_{series_id}.xlsx"
    return StreamingResponse(
        stream,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@catalog_router.get("/{course_type_id}/next", response_model=List[str])
def next_courses(course_type_id: str, engine: TrainingEngine = Depends(get_engine)):
    with domain_errors():
        return engine.next_available_courses(course_type_id)
