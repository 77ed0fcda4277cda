"""Flatten the active schedule into one row per defense and write it as CSV or JSON."""
from __future__ import annotations

from typing import List, Optional

import pandas as pd

from .models import StudentProfile
from .schedule_view import ScheduleView
from .store import InMemoryEntityStore

EXPORT_COLUMNS = [
    "committee_code",
    "committee_name",
    "defense_date",
    "room",
    "session",
    "start_time",
    "end_time",
    "topic_code",
    "title",
    "student_code",
    "student_name",
    "supervisor_code",
    "chair",
    "tag_override",
]

EXPORT_FORMATS = ("csv", "json")


def schedule_frame(store: InMemoryEntityStore, committee_code: Optional[str] = None) -> pd.DataFrame:
    """One row per active assignment, ordered by date, committee and start time."""
    view = ScheduleView.load(store)
    students = {s.code: s.full_name for s in store.list(StudentProfile)}
    rows: List[dict] = []
    for assignment in view.active_assignments(committee_code=committee_code):
        committee = view.committee(assignment.committee_code)
        topic = view.topics.get(assignment.topic_code)
        chairs = view.chairs_of(assignment.committee_code)
        chair = view.lecturers.get(chairs[0].lecturer_code) if chairs else None
        rows.append(
            {
                "committee_code": assignment.committee_code,
                "committee_name": committee.name if committee else "",
                "defense_date": assignment.scheduled_at.date(),
                "room": committee.room if committee else None,
                "session": assignment.session,
                "start_time": assignment.scheduled_at,
                "end_time": assignment.ends_at,
                "topic_code": assignment.topic_code,
                "title": topic.title if topic else "",
                "student_code": topic.student_code if topic else None,
                "student_name": students.get(topic.student_code) if topic and topic.student_code else None,
                "supervisor_code": topic.supervisor_code if topic else None,
                "chair": chair.full_name if chair else None,
                "tag_override": assignment.tag_override,
            }
        )
    df = pd.DataFrame(rows, columns=EXPORT_COLUMNS)
    if df.empty:
        return df
    df["defense_date"] = pd.to_datetime(df["defense_date"]).dt.strftime("%Y-%m-%d")
    df["start_time"] = pd.to_datetime(df["start_time"]).dt.strftime("%H:%M")
    df["end_time"] = pd.to_datetime(df["end_time"]).dt.strftime("%H:%M")
    return df.sort_values(["defense_date", "committee_code", "start_time"]).reset_index(drop=True)


def export_schedule(
    store: InMemoryEntityStore,
    fmt: str = "csv",
    committee_code: Optional[str] = None,
) -> bytes:
    if fmt not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format '{fmt}', expected one of {', '.join(EXPORT_FORMATS)}")
    df = schedule_frame(store, committee_code)
    if fmt == "json":
        return df.to_json(orient="records", force_ascii=False).encode("utf-8")
    return df.to_csv(index=False).encode("utf-8")


__all__ = ["EXPORT_COLUMNS", "EXPORT_FORMATS", "export_schedule", "schedule_frame"]
