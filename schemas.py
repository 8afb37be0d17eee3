"""
Database Schemas for the Attendance Tracker (MongoDB via Pydantic models)
Each model describes the documents of one collection; field names are stored as-is.
"""

from datetime import date, datetime, time, timezone
from typing import Any, List, Literal, Optional, Tuple

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

Role = Literal["admin", "teacher"]
Status = Literal["present", "absent", "leave"]


# ----------------------- Helpers -----------------------

def parse_datetime(value: Any) -> datetime:
    """Accept a datetime, a date or an ISO 8601 string ('2024-01-15', '2024-01-15T08:30:00Z').

    Values without an offset are taken as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time())
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            raise ValueError(f"Invalid date: {value!r}")
    else:
        raise ValueError("Date must be an ISO 8601 string")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def utcnow() -> datetime:
    """Current UTC time at the millisecond precision the store keeps."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def day_bounds(value: datetime) -> Tuple[datetime, datetime]:
    """First and last millisecond of the calendar day, in the value's own timezone."""
    start = value.replace(hour=0, minute=0, second=0, microsecond=0)
    end = value.replace(hour=23, minute=59, second=59, microsecond=999000)
    return start, end


def to_object_id(value: Any) -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise ValueError("Invalid ID")
    return ObjectId(value)


def serialize(doc: dict) -> dict:
    out = {}
    for key, value in doc.items():
        if key == "_id":
            out["id"] = str(value)
        elif isinstance(value, ObjectId):
            out[key] = str(value)
        else:
            out[key] = value
    return out


class Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_document(self, partial: bool = False) -> dict:
        if partial:
            return self.model_dump(by_alias=True, exclude_unset=True)
        return self.model_dump(by_alias=True, exclude_none=True)


def _reject_nulls(data: Any, fields: Tuple[str, ...]) -> Any:
    if isinstance(data, dict):
        for name in fields:
            if name in data and data[name] is None:
                raise ValueError(f"{name} is required")
    return data


# ----------------------- Students -----------------------

class StudentIn(Record):
    name: str = Field(..., min_length=1)
    roll_number: str = Field(..., alias="rollNumber", min_length=1)
    class_name: str = Field(..., alias="class", min_length=1)
    section: str = Field(..., min_length=1)
    dob: Optional[datetime] = None
    address: Optional[str] = None
    parent_contact: Optional[str] = Field(None, alias="parentContact")

    @field_validator("dob", mode="before")
    @classmethod
    def _parse_dob(cls, v):
        return None if v is None else parse_datetime(v)


class StudentUpdate(Record):
    name: Optional[str] = Field(None, min_length=1)
    roll_number: Optional[str] = Field(None, alias="rollNumber", min_length=1)
    class_name: Optional[str] = Field(None, alias="class", min_length=1)
    section: Optional[str] = Field(None, min_length=1)
    dob: Optional[datetime] = None
    address: Optional[str] = None
    parent_contact: Optional[str] = Field(None, alias="parentContact")

    @field_validator("dob", mode="before")
    @classmethod
    def _parse_dob(cls, v):
        return None if v is None else parse_datetime(v)

    @model_validator(mode="before")
    @classmethod
    def _required_not_null(cls, data):
        return _reject_nulls(data, ("name", "rollNumber", "class", "section"))


# ----------------------- Attendance -----------------------

class AttendanceMark(Record):
    student_id: str = Field(..., alias="studentId")
    student_name: Optional[str] = Field(None, alias="studentName")
    date: datetime
    status: Status
    marked_by: Optional[str] = Field(None, alias="markedBy")

    @field_validator("student_id", mode="before")
    @classmethod
    def _parse_student_id(cls, v):
        return str(to_object_id(v))

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, v):
        return parse_datetime(v)


# ----------------------- Classes -----------------------

class ClassIn(Record):
    class_name: str = Field(..., alias="className", min_length=1)
    sections: List[str] = Field(default_factory=list)


class ClassUpdate(Record):
    class_name: Optional[str] = Field(None, alias="className", min_length=1)
    sections: Optional[List[str]] = None

    @model_validator(mode="before")
    @classmethod
    def _required_not_null(cls, data):
        return _reject_nulls(data, ("className",))


# ----------------------- Teachers -----------------------

class AssignedClass(Record):
    class_name: Optional[str] = Field(None, alias="className")
    section: Optional[str] = None


class TeacherIn(Record):
    """Admin or teacher account. Also used by the seed script."""
    email: EmailStr
    name: str = Field(..., min_length=1)
    role: Role
    assigned_classes: List[AssignedClass] = Field(default_factory=list, alias="assignedClasses")


class TeacherUpdate(Record):
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(None, min_length=1)
    role: Optional[Role] = None
    assigned_classes: Optional[List[AssignedClass]] = Field(None, alias="assignedClasses")

    @model_validator(mode="before")
    @classmethod
    def _required_not_null(cls, data):
        return _reject_nulls(data, ("email", "name", "role"))
