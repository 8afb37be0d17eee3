import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import database
from database import ATTENDANCE, CLASSES, STUDENTS, TEACHERS
from schemas import (
    AttendanceMark,
    ClassIn,
    ClassUpdate,
    StudentIn,
    StudentUpdate,
    TeacherIn,
    TeacherUpdate,
    day_bounds,
    parse_datetime,
    serialize,
    to_object_id,
    utcnow,
)
from setup_admin import setup_users

logging.basicConfig(
    level=database.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def get_db() -> Database:
    try:
        return database.get_database()
    except Exception:
        raise HTTPException(status_code=500, detail="Database connection failed")


app = FastAPI(title="School Attendance API", dependencies=[Depends(get_db)])

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------- Error Handlers -----------------------

@app.exception_handler(StarletteHTTPException)
async def http_error(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_error(request: Request, exc: RequestValidationError):
    messages = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        msg = err.get("msg", "Invalid value")
        messages.append(f"{'.'.join(loc)}: {msg}" if loc else msg)
    return JSONResponse(status_code=400, content={"error": "; ".join(messages)})


@app.exception_handler(Exception)
async def server_error(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": str(exc)})


# ----------------------- Utility Functions -----------------------

def object_id(value: str):
    try:
        return to_object_id(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid ID")


def parse_query_date(value: str):
    try:
        return parse_datetime(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def update_by_id(db: Database, collection: str, oid, data: dict, entity: str) -> dict:
    if data:
        try:
            doc = db[collection].find_one_and_update(
                {"_id": oid}, {"$set": data}, return_document=ReturnDocument.AFTER
            )
        except PyMongoError as e:
            raise HTTPException(status_code=400, detail=str(e))
    else:
        doc = db[collection].find_one({"_id": oid})
    if not doc:
        raise HTTPException(status_code=404, detail=f"{entity} not found")
    return serialize(doc)


def delete_by_id(db: Database, collection: str, oid, entity: str) -> None:
    res = db[collection].delete_one({"_id": oid})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail=f"{entity} not found")


def insert(db: Database, collection: str, doc: dict) -> dict:
    doc["createdAt"] = utcnow()
    try:
        res = db[collection].insert_one(doc)
    except PyMongoError as e:
        raise HTTPException(status_code=400, detail=str(e))
    doc["_id"] = res.inserted_id
    return serialize(doc)


# ----------------------- Health -----------------------

@app.get("/")
def read_root():
    return {"message": "School Attendance API is running!"}


@app.get("/health")
def health():
    return {"ok": True, "time": datetime.now(timezone.utc).isoformat()}


# ----------------------- Student Endpoints -----------------------

@app.get("/api/students")
def list_students(
    class_name: Optional[str] = Query(None, alias="class"),
    section: Optional[str] = None,
    db: Database = Depends(get_db),
):
    query = {}
    if class_name:
        query["class"] = class_name
    if section:
        query["section"] = section
    docs = db[STUDENTS].find(query).sort("rollNumber", ASCENDING)
    return [serialize(d) for d in docs]


@app.get("/api/students/{student_id}")
def get_student(student_id: str, db: Database = Depends(get_db)):
    doc = db[STUDENTS].find_one({"_id": object_id(student_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Student not found")
    return serialize(doc)


@app.post("/api/students", status_code=201)
def create_student(student: StudentIn, db: Database = Depends(get_db)):
    return insert(db, STUDENTS, student.to_document())


@app.put("/api/students/{student_id}")
def update_student(student_id: str, payload: StudentUpdate, db: Database = Depends(get_db)):
    return update_by_id(db, STUDENTS, object_id(student_id), payload.to_document(partial=True), "Student")


@app.delete("/api/students/{student_id}")
def delete_student(student_id: str, db: Database = Depends(get_db)):
    delete_by_id(db, STUDENTS, object_id(student_id), "Student")
    return {"message": "Student deleted successfully"}


# ----------------------- Attendance -----------------------

@app.post("/api/attendance")
def mark_attendance(payload: AttendanceMark, db: Database = Depends(get_db)):
    start, end = day_bounds(payload.date)
    query = {"studentId": to_object_id(payload.student_id), "date": {"$gte": start, "$lte": end}}
    fields = {"status": payload.status, "timestamp": utcnow()}
    if payload.marked_by is not None:
        fields["markedBy"] = payload.marked_by
    on_insert = {"date": start}
    if payload.student_name is not None:
        on_insert["studentName"] = payload.student_name
    update = {"$set": fields, "$setOnInsert": on_insert}
    try:
        doc = db[ATTENDANCE].find_one_and_update(
            query, update, upsert=True, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError:
        # another request inserted the day's record first
        doc = db[ATTENDANCE].find_one_and_update(query, update, return_document=ReturnDocument.AFTER)
    except PyMongoError as e:
        raise HTTPException(status_code=400, detail=str(e))
    # the store keeps UTC; answer in the offset the day was given in
    doc["date"] = doc["date"].astimezone(start.tzinfo)
    return serialize(doc)


@app.get("/api/attendance")
def attendance_by_date(
    date: Optional[str] = None,
    class_name: Optional[str] = Query(None, alias="class"),
    section: Optional[str] = None,
    db: Database = Depends(get_db),
):
    if not date:
        raise HTTPException(status_code=400, detail="Date is required")
    # class and section are accepted but attendance records carry neither
    start, end = day_bounds(parse_query_date(date))
    docs = db[ATTENDANCE].find({"date": {"$gte": start, "$lte": end}})
    return [serialize(d) for d in docs]


@app.get("/api/attendance/student/{student_id}")
def attendance_by_student(
    student_id: str,
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    db: Database = Depends(get_db),
):
    query = {"studentId": object_id(student_id)}
    if start_date and end_date:
        query["date"] = {"$gte": parse_query_date(start_date), "$lte": parse_query_date(end_date)}
    docs = db[ATTENDANCE].find(query).sort("date", DESCENDING)
    return [serialize(d) for d in docs]


# ----------------------- Classes -----------------------

@app.get("/api/classes")
def list_classes(db: Database = Depends(get_db)):
    return [serialize(d) for d in db[CLASSES].find().sort("className", ASCENDING)]


@app.get("/api/classes/{class_id}")
def get_class(class_id: str, db: Database = Depends(get_db)):
    doc = db[CLASSES].find_one({"_id": object_id(class_id)})
    if not doc:
        raise HTTPException(status_code=404, detail="Class not found")
    return serialize(doc)


@app.post("/api/classes", status_code=201)
def create_class(payload: ClassIn, db: Database = Depends(get_db)):
    return insert(db, CLASSES, payload.to_document())


@app.put("/api/classes/{class_id}")
def update_class(class_id: str, payload: ClassUpdate, db: Database = Depends(get_db)):
    return update_by_id(db, CLASSES, object_id(class_id), payload.to_document(partial=True), "Class")


@app.delete("/api/classes/{class_id}")
def delete_class(class_id: str, db: Database = Depends(get_db)):
    delete_by_id(db, CLASSES, object_id(class_id), "Class")
    return {"message": "Class deleted successfully"}


# ----------------------- Setup -----------------------

@app.post("/api/setup")
def setup(db: Database = Depends(get_db)):
    return setup_users(db)


# ----------------------- Teachers -----------------------

@app.get("/api/teachers")
def list_teachers(db: Database = Depends(get_db)):
    return [serialize(d) for d in db[TEACHERS].find().sort("name", ASCENDING)]


@app.get("/api/teachers/email/{email}")
def get_teacher_by_email(email: str, db: Database = Depends(get_db)):
    doc = db[TEACHERS].find_one({"email": email})
    if not doc:
        raise HTTPException(status_code=404, detail="Teacher not found")
    return serialize(doc)


@app.post("/api/teachers", status_code=201)
def create_teacher(payload: TeacherIn, db: Database = Depends(get_db)):
    return insert(db, TEACHERS, payload.to_document())


@app.put("/api/teachers/{teacher_id}")
def update_teacher(teacher_id: str, payload: TeacherUpdate, db: Database = Depends(get_db)):
    return update_by_id(db, TEACHERS, object_id(teacher_id), payload.to_document(partial=True), "Teacher")


if __name__ == "__main__":
    import uvicorn
    logger.info("Server running on port %s (http://localhost:%s/api)", database.PORT, database.PORT)
    uvicorn.run(app, host="0.0.0.0", port=database.PORT)
