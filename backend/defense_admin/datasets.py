"""
Dataset directories under ``data/input``: CSV tables for tags, lecturers,
students and topics plus an optional ``committees.json``. Loading writes the
plain records straight to the store and sends committees through the registry.
"""
from __future__ import annotations

import csv
import json
import logging
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .config import DATA_INPUT_DIR
from .models import Committee, LecturerProfile, MemberRole, StudentProfile, Tag, Topic, TopicStatus
from .registry import CommitteeDraft, CommitteeRegistry, MemberInput
from .store import InMemoryEntityStore, Put

logger = logging.getLogger(__name__)

TAG_COLUMNS = ["code", "name"]
TAG_OPTIONAL_COLUMNS = ["description"]

LECTURER_COLUMNS = ["code", "full_name"]
LECTURER_OPTIONAL_COLUMNS = ["degree", "department_code", "tags", "defense_quota"]

STUDENT_COLUMNS = ["code", "full_name"]
STUDENT_OPTIONAL_COLUMNS = ["department_code"]

TOPIC_COLUMNS = ["code", "title", "status"]
TOPIC_OPTIONAL_COLUMNS = [
    "summary",
    "tags",
    "primary_tag",
    "department_code",
    "specialty_code",
    "student_code",
    "supervisor_code",
    "created_at",
]

COMMITTEE_FILE = "committees.json"
COMMITTEE_KEY = "committees"


def ensure_dataset(name: Union[str, Path]) -> Path:
    candidate = Path(name)
    dataset_dir = candidate if candidate.is_dir() else DATA_INPUT_DIR / str(name)
    if not dataset_dir.is_dir():
        raise FileNotFoundError(f"Dataset '{name}' not found")
    return dataset_dir


def list_datasets() -> List[Dict[str, Any]]:
    if not DATA_INPUT_DIR.is_dir():
        return []
    entries: List[Dict[str, Any]] = []
    for path in sorted(DATA_INPUT_DIR.iterdir()):
        if not path.is_dir():
            continue
        entries.append(
            {
                "name": path.name,
                "files": sorted(p.name for p in path.iterdir() if p.suffix in {".csv", ".json"}),
            }
        )
    return entries


def read_csv(path: Path, required_headers: List[str], optional_headers: Optional[List[str]] = None) -> List[Dict[str, str]]:
    if not path.exists():
        raise FileNotFoundError(f"Missing file {path.name}")
    with path.open(encoding="utf-8") as f:
        reader = csv.DictReader(f)
        headers = reader.fieldnames or []
        missing = [col for col in required_headers if col not in headers]
        if missing:
            raise ValueError(f"Missing required columns in {path.name}: {missing}")
        optional_headers = optional_headers or []
        rows: List[Dict[str, str]] = []
        for row in reader:
            normalized = {key: (value or "").strip() for key, value in row.items() if key}
            for opt in optional_headers:
                normalized.setdefault(opt, "")
            rows.append(normalized)
        return rows


def read_json(path: Path, required_keys: List[str]) -> Dict:
    if not path.exists():
        raise FileNotFoundError(f"Missing file {path.name}")
    data = json.loads(path.read_text(encoding="utf-8"))
    for key in required_keys:
        if key not in data:
            raise ValueError(f"Missing key '{key}' in {path.name}")
    return data


def _split_tags(value: str) -> frozenset:
    return frozenset(tag.strip() for tag in value.split(";") if tag.strip())


def _optional(value: str) -> Optional[str]:
    return value or None


def _parse_time(value: Any) -> Optional[time]:
    if not value:
        return None
    return time.fromisoformat(str(value))


def tag_from_row(row: Dict[str, str]) -> Tag:
    return Tag(code=row["code"], name=row["name"], description=_optional(row["description"]))


def lecturer_from_row(row: Dict[str, str], default_quota: int = 5) -> LecturerProfile:
    return LecturerProfile(
        code=row["code"],
        full_name=row["full_name"],
        degree=_optional(row["degree"]),
        department_code=_optional(row["department_code"]),
        tags=_split_tags(row["tags"]),
        defense_quota=int(row["defense_quota"]) if row["defense_quota"] else default_quota,
    )


def student_from_row(row: Dict[str, str]) -> StudentProfile:
    return StudentProfile(
        code=row["code"],
        full_name=row["full_name"],
        department_code=_optional(row["department_code"]),
    )


def topic_from_row(row: Dict[str, str]) -> Topic:
    topic = Topic(
        code=row["code"],
        title=row["title"],
        summary=_optional(row["summary"]),
        tags=_split_tags(row["tags"]),
        primary_tag=_optional(row["primary_tag"]),
        department_code=_optional(row["department_code"]),
        specialty_code=_optional(row["specialty_code"]),
        status=TopicStatus(row["status"]),
        student_code=_optional(row["student_code"]),
        supervisor_code=_optional(row["supervisor_code"]),
    )
    if row["created_at"]:
        topic.created_at = datetime.fromisoformat(row["created_at"])
    return topic


def committee_draft_from_entry(entry: Dict[str, Any]) -> CommitteeDraft:
    members = [
        MemberInput(
            lecturer_code=item["lecturer_code"],
            role=MemberRole(item.get("role", MemberRole.MEMBER.value)),
            is_chair=bool(item.get("is_chair", False)),
        )
        for item in entry.get("members", [])
    ]
    defense_date = entry.get("defense_date")
    return CommitteeDraft(
        code=entry.get("code"),
        name=entry["name"],
        defense_date=date.fromisoformat(defense_date) if defense_date else None,
        room=entry.get("room"),
        session_capacity=entry.get("session_capacity"),
        tags=entry.get("tags", []),
        start_time=_parse_time(entry.get("start_time")),
        end_time=_parse_time(entry.get("end_time")),
        members=members or None,
    )


def load_dataset(
    name: Union[str, Path],
    store: InMemoryEntityStore,
    registry: Optional[CommitteeRegistry] = None,
) -> Dict[str, int]:
    """
    Seed ``store`` from a dataset directory.

    ``tags.csv``, ``lecturers.csv``, ``students.csv`` and ``topics.csv`` are
    required; ``committees.json`` is optional and goes through the registry so
    rosters obey the same composition rules as manual edits. Records whose code
    already exists are skipped.
    """
    dataset_dir = ensure_dataset(name)
    default_quota = registry.settings.default_defense_quota if registry else 5
    tables = [
        ("tags", Tag, read_csv(dataset_dir / "tags.csv", TAG_COLUMNS, TAG_OPTIONAL_COLUMNS), tag_from_row),
        (
            "lecturers",
            LecturerProfile,
            read_csv(dataset_dir / "lecturers.csv", LECTURER_COLUMNS, LECTURER_OPTIONAL_COLUMNS),
            lambda row: lecturer_from_row(row, default_quota),
        ),
        (
            "students",
            StudentProfile,
            read_csv(dataset_dir / "students.csv", STUDENT_COLUMNS, STUDENT_OPTIONAL_COLUMNS),
            student_from_row,
        ),
        ("topics", Topic, read_csv(dataset_dir / "topics.csv", TOPIC_COLUMNS, TOPIC_OPTIONAL_COLUMNS), topic_from_row),
    ]

    counts: Dict[str, int] = {}
    mutations = []
    for label, entity_type, rows, build in tables:
        added = 0
        for row in rows:
            record = build(row)
            if store.find(entity_type, record.code) is not None:
                logger.warning("Skipping existing %s '%s'", entity_type.__name__, record.code)
                continue
            mutations.append(Put(record))
            added += 1
        counts[label] = added
    store.save(mutations)

    counts["committees"] = 0
    committee_path = dataset_dir / COMMITTEE_FILE
    if committee_path.exists():
        if registry is None:
            raise ValueError(f"{COMMITTEE_FILE} present but no committee registry given")
        data = read_json(committee_path, [COMMITTEE_KEY])
        for entry in data[COMMITTEE_KEY]:
            draft = committee_draft_from_entry(entry)
            if draft.code and store.find(Committee, draft.code) is not None:
                logger.warning("Skipping existing committee '%s'", draft.code)
                continue
            registry.create_committee(draft)
            counts["committees"] += 1

    logger.info("Loaded dataset %s: %s", dataset_dir.name, counts)
    return counts


__all__ = [
    "ensure_dataset",
    "list_datasets",
    "load_dataset",
    "read_csv",
    "read_json",
]
