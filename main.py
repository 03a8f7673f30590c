import asyncio
import logging
import os
import re
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.database import Database
from pymongo.errors import PyMongoError

from auth import ensure_self_or_admin, issue_token, require_admin, require_teacher, verify_token
from database import (
    Step,
    as_utc,
    connect,
    create_document,
    database_name,
    get_db,
    get_documents,
    oid,
    run_compensated,
    serialize_doc,
    utcnow,
)
from observability import setup_logging
from payments import PaymentGateway, PaymentGatewayError, gateway_from_env, get_payment_gateway, to_minor_units
from schemas import Assignment, Class, Enrollment, Feedback, Payment, Submission, TeacherRequest, User

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(os.getenv("LOG_LEVEL", "INFO"), os.getenv("LOG_FORMAT", "json"))
    client = connect()
    app.state.mongo_client = client
    app.state.db = client[database_name()] if client is not None else None
    app.state.payment_gateway = gateway_from_env()
    logger.info("Edu Platform API started")
    yield
    if client is not None:
        client.close()
    logger.info("Edu Platform API shut down")


app = FastAPI(title="Edu Platform API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("FRONTEND_URL", "http://localhost:5173").split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ----------------------
# Error handlers
# ----------------------
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error on {request.url.path}: {exc.errors()}", extra={"path": request.url.path})
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": "Invalid request data",
            "errors": [
                {
                    "field": ".".join(str(loc) for loc in e["loc"]),
                    "message": e["msg"],
                    "type": e["type"],
                }
                for e in exc.errors()
            ],
        },
    )


@app.exception_handler(PyMongoError)
async def database_error_handler(request: Request, exc: PyMongoError):
    logger.error(
        f"Database error on {request.url.path}: {exc}",
        exc_info=True,
        extra={"path": request.url.path, "error_code": "DATABASE_ERROR"},
    )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.exception_handler(PaymentGatewayError)
async def payment_error_handler(request: Request, exc: PaymentGatewayError):
    logger.error(
        f"Payment gateway error on {request.url.path}: {exc}",
        extra={"path": request.url.path, "error_code": "PAYMENT_GATEWAY_ERROR"},
    )
    return JSONResponse(status_code=500, content={"detail": "Failed to create payment intent"})


@app.exception_handler(Exception)
async def generic_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True, extra={"path": request.url.path})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ----------------------
# Utils
# ----------------------
def normalize_email(email: str) -> str:
    return email.strip().lower()


def require_email(email: Optional[str]) -> str:
    if not email or not email.strip():
        raise HTTPException(status_code=400, detail="Email is required")
    return normalize_email(email)


def find_or_404(db: Database, collection: str, _id: ObjectId, label: str) -> dict:
    doc = db[collection].find_one({"_id": _id})
    if not doc:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return doc


def owned_class(db: Database, class_id: str, current: dict) -> dict:
    """Load a class the caller may manage: its teacher, or any admin."""
    doc = find_or_404(db, "classes", oid(class_id), "Class")
    if current.get("role") != "admin" and doc.get("teacherEmail") != current.get("email"):
        raise HTTPException(status_code=403, detail="Not your class")
    return doc


# ----------------------
# Request / response models
# ----------------------
class ActionResult(BaseModel):
    success: bool = True
    message: str
    insertedId: Optional[str] = None


class UpdateResult(BaseModel):
    success: bool
    message: str
    modifiedCount: int


class DeleteResult(BaseModel):
    success: bool
    message: str
    deletedCount: int


class TokenResponse(BaseModel):
    token: str


class UserCreate(BaseModel):
    email: EmailStr
    displayName: Optional[str] = None
    photoURL: Optional[str] = None


class RoleResponse(BaseModel):
    email: str
    role: str


class UserPage(BaseModel):
    users: List[Dict[str, Any]]
    total: int
    page: int
    limit: int


class ClassCreate(BaseModel):
    title: str = Field(..., min_length=1)
    teacherEmail: EmailStr
    price: float = Field(..., ge=0, allow_inf_nan=False)
    teacherName: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None


class ClassUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0, allow_inf_nan=False)
    teacherName: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None


class PaymentIntentRequest(BaseModel):
    price: float = Field(..., gt=0, strict=True, allow_inf_nan=False)
    currency: str = Field("usd", min_length=3, max_length=3)


class PaymentIntentResponse(BaseModel):
    clientSecret: str


class PaymentCreate(BaseModel):
    email: EmailStr
    classId: str
    transactionId: str = Field(..., min_length=1)
    price: float = Field(..., gt=0, allow_inf_nan=False)
    method: str = "card"
    status: str = "succeeded"


class EnrollmentCreate(BaseModel):
    email: EmailStr
    classId: str


class PurchaseResult(BaseModel):
    success: bool = True
    message: str
    paymentId: Optional[str] = None
    enrollmentId: str


class AssignmentCreate(BaseModel):
    classId: str
    title: str = Field(..., min_length=1)
    deadline: str = Field(..., min_length=1)
    description: Optional[str] = None


class AssignmentUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    deadline: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None


class SubmissionCreate(BaseModel):
    assignmentId: str
    studentEmail: EmailStr
    answer: str = Field(..., min_length=1)


class SubmissionCount(BaseModel):
    classId: str
    count: int


class FeedbackCreate(BaseModel):
    classId: str
    description: str = Field(..., min_length=1)
    rating: float = Field(..., ge=1, le=5, strict=True, allow_inf_nan=False)
    studentEmail: EmailStr
    createdAt: datetime
    studentName: Optional[str] = None
    studentImage: Optional[str] = None


class ProgressResponse(BaseModel):
    enrolledCount: int
    assignmentCount: int
    submissionCount: int


class TeacherRequestCreate(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1)
    photo: Optional[str] = None
    experience: str
    title: str
    category: str


class ResendRequest(BaseModel):
    email: EmailStr


# ----------------------
# Basic routes
# ----------------------
@app.get("/")
def root():
    return {"message": "Edu Platform Backend is Running"}


@app.get("/test")
def test_database(request: Request):
    response = {
        "backend": "Running",
        "database": "Not Available",
        "database_name": database_name(),
        "connection_status": "Not Connected",
        "collections": [],
    }
    db = getattr(request.app.state, "db", None)
    try:
        if db is not None:
            response["collections"] = db.list_collection_names()
            response["database"] = "Connected & Working"
            response["connection_status"] = "Connected"
    except PyMongoError as e:
        logger.warning(f"Database diagnostic failed: {e}")
        response["database"] = f"Connected but error: {str(e)[:80]}"
    return response


# ----------------------
# Tokens
# ----------------------
@app.post("/jwt", response_model=TokenResponse)
def create_jwt(payload: Dict[str, Any] = Body(...)):
    return TokenResponse(token=issue_token(payload))


# ----------------------
# Users
# ----------------------
def find_user_by_email(db: Database, email: str) -> dict:
    user = db["users"].find_one({"email": normalize_email(email)})
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@app.post("/user", response_model=ActionResult, status_code=status.HTTP_201_CREATED)
def upsert_user(body: UserCreate, response: Response, db: Database = Depends(get_db)):
    email = normalize_email(body.email)
    user = User(email=email, displayName=body.displayName, photoURL=body.photoURL)
    res = db["users"].update_one({"email": email}, {"$setOnInsert": user.model_dump()}, upsert=True)
    if res.upserted_id is None:
        response.status_code = status.HTTP_200_OK
        return ActionResult(message="User already existed")
    logger.info("User created", extra={"email": email})
    return ActionResult(message="User created successfully", insertedId=str(res.upserted_id))


@app.get("/users/{email}")
def get_user(email: str, claims=Depends(verify_token), db: Database = Depends(get_db)):
    ensure_self_or_admin(claims, email, db)
    return serialize_doc(find_user_by_email(db, email))


@app.get("/user/role", response_model=RoleResponse)
def get_user_role(email: Optional[str] = None, claims=Depends(verify_token), db: Database = Depends(get_db)):
    email = require_email(email)
    ensure_self_or_admin(claims, email, db)
    user = find_user_by_email(db, email)
    return RoleResponse(email=user["email"], role=user.get("role", "student"))


@app.get("/users", response_model=UserPage)
def search_users(
    search: str = "",
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current=Depends(require_admin),
    db: Database = Depends(get_db),
):
    q: Dict[str, Any] = {}
    if search.strip():
        pattern = {"$regex": re.escape(search.strip()), "$options": "i"}
        q = {"$or": [{"displayName": pattern}, {"email": pattern}]}
    total = db["users"].count_documents(q)
    cursor = db["users"].find(q).sort("created_at", -1).skip((page - 1) * limit).limit(limit)
    return UserPage(users=[serialize_doc(u) for u in cursor], total=total, page=page, limit=limit)


@app.patch("/users/admin/{user_id}", response_model=UpdateResult)
def make_admin(user_id: str, current=Depends(require_admin), db: Database = Depends(get_db)):
    res = db["users"].update_one({"_id": oid(user_id)}, {"$set": {"role": "admin"}})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="User not found")
    logger.info(f"User {user_id} promoted to admin", extra={"email": current["email"]})
    return UpdateResult(success=True, message="User promoted to admin", modifiedCount=res.modified_count)


# ----------------------
# Classes (teacher)
# ----------------------
@app.post("/teacher/classes", response_model=ActionResult, status_code=status.HTTP_201_CREATED)
def create_class(body: ClassCreate, current=Depends(require_teacher), db: Database = Depends(get_db)):
    teacher_email = normalize_email(body.teacherEmail)
    ensure_self_or_admin(current, teacher_email, db)
    doc = Class(
        title=body.title,
        teacherEmail=teacher_email,
        teacherName=body.teacherName or current.get("displayName"),
        price=body.price,
        description=body.description,
        image=body.image,
    )
    class_id = create_document(db, "classes", doc)
    logger.info(f"Class {class_id} submitted for review", extra={"email": teacher_email, "class_id": class_id})
    return ActionResult(message="Class submitted for review", insertedId=class_id)


@app.get("/teacher/classes")
def list_teacher_classes(email: Optional[str] = None, current=Depends(require_teacher), db: Database = Depends(get_db)):
    email = require_email(email)
    ensure_self_or_admin(current, email, db)
    return get_documents(db, "classes", {"teacherEmail": email}, sort_field="createdAt")


@app.patch("/teacher/classes/{class_id}", response_model=UpdateResult)
def update_class(class_id: str, body: ClassUpdate, current=Depends(require_teacher), db: Database = Depends(get_db)):
    data = body.model_dump(exclude_none=True)
    if not data:
        raise HTTPException(status_code=400, detail="Nothing to update")
    doc = owned_class(db, class_id, current)
    res = db["classes"].update_one({"_id": doc["_id"]}, {"$set": data})
    return UpdateResult(success=True, message="Class updated", modifiedCount=res.modified_count)


@app.delete("/teacher/classes/{class_id}", response_model=DeleteResult)
def delete_class(class_id: str, current=Depends(require_teacher), db: Database = Depends(get_db)):
    doc = owned_class(db, class_id, current)
    res = db["classes"].delete_one({"_id": doc["_id"]})
    logger.info(f"Class {class_id} deleted", extra={"class_id": class_id})
    return DeleteResult(success=True, message="Class deleted", deletedCount=res.deleted_count)


# ----------------------
# Classes (public)
# ----------------------
@app.get("/classes/approved")
def list_approved_classes(db: Database = Depends(get_db)):
    return get_documents(db, "classes", {"status": "approved"}, sort_field="createdAt")


@app.get("/classes/{class_id}")
def get_class(class_id: str, db: Database = Depends(get_db)):
    return serialize_doc(find_or_404(db, "classes", oid(class_id), "Class"))


# ----------------------
# Classes (admin)
# ----------------------
@app.get("/admin/classes")
def list_all_classes(current=Depends(require_admin), db: Database = Depends(get_db)):
    return get_documents(db, "classes", sort_field="createdAt")


def moderate_class(db: Database, class_id: str, new_status: str) -> UpdateResult:
    doc = find_or_404(db, "classes", oid(class_id), "Class")
    res = db["classes"].update_one({"_id": doc["_id"], "status": "pending"}, {"$set": {"status": new_status}})
    if res.matched_count == 0:
        logger.warning(f"Class {class_id} is {doc.get('status')}, cannot mark {new_status}", extra={"class_id": class_id})
        raise HTTPException(status_code=400, detail=f"Class is already {doc.get('status')}")
    logger.info(f"Class {class_id} {new_status}", extra={"class_id": class_id})
    return UpdateResult(success=True, message=f"Class {new_status}", modifiedCount=res.modified_count)


@app.patch("/admin/classes/approve/{class_id}", response_model=UpdateResult)
def approve_class(class_id: str, current=Depends(require_admin), db: Database = Depends(get_db)):
    return moderate_class(db, class_id, "approved")


@app.patch("/admin/classes/reject/{class_id}", response_model=UpdateResult)
def reject_class(class_id: str, current=Depends(require_admin), db: Database = Depends(get_db)):
    return moderate_class(db, class_id, "rejected")


# ----------------------
# Payments & enrollments
# ----------------------
@app.post("/create-payment-intent", response_model=PaymentIntentResponse)
def create_payment_intent(
    body: PaymentIntentRequest,
    claims=Depends(verify_token),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    client_secret = gateway.create_payment_intent(to_minor_units(body.price), body.currency.lower())
    return PaymentIntentResponse(clientSecret=client_secret)


def enroll_student(db: Database, class_doc: dict, email: str, payment: Optional[Payment] = None) -> PurchaseResult:
    """Record an (optional) payment, the enrollment and the class counter as one compensated sequence."""
    class_id = str(class_doc["_id"])
    if db["enrollments"].find_one({"email": email, "classId": class_id}):
        raise HTTPException(status_code=400, detail="Already enrolled in this class")

    payment_id = ObjectId()
    enrollment_id = ObjectId()
    enrollment = Enrollment(
        email=email,
        classId=class_id,
        classTitle=class_doc.get("title", ""),
        teacherName=class_doc.get("teacherName"),
        image=class_doc.get("image"),
        price=payment.price if payment else class_doc.get("price", 0.0),
        paymentId=str(payment_id) if payment else None,
    )

    steps = []
    if payment is not None:
        steps.append(Step(
            "insert payment",
            lambda: create_document(db, "payments", {"_id": payment_id, **payment.model_dump()}),
            lambda _: db["payments"].delete_one({"_id": payment_id}),
        ))
    steps.append(Step(
        "insert enrollment",
        lambda: create_document(db, "enrollments", {"_id": enrollment_id, **enrollment.model_dump()}),
        lambda _: db["enrollments"].delete_one({"_id": enrollment_id}),
    ))
    steps.append(Step(
        "increment enrolled",
        lambda: db["classes"].update_one({"_id": class_doc["_id"]}, {"$inc": {"enrolled": 1}}),
    ))
    run_compensated(steps)

    logger.info(f"Enrolled in class {class_id}", extra={"email": email, "class_id": class_id})
    return PurchaseResult(
        message="Payment recorded and enrollment created" if payment else "Enrollment created",
        paymentId=str(payment_id) if payment else None,
        enrollmentId=str(enrollment_id),
    )


@app.post("/payments", response_model=PurchaseResult, status_code=status.HTTP_201_CREATED)
def record_payment(body: PaymentCreate, claims=Depends(verify_token), db: Database = Depends(get_db)):
    email = normalize_email(body.email)
    ensure_self_or_admin(claims, email, db)
    class_doc = find_or_404(db, "classes", oid(body.classId), "Class")
    class_price = float(class_doc.get("price") or 0)
    if class_price <= 0:
        raise HTTPException(status_code=400, detail="Free classes are joined through /enrollments")
    if to_minor_units(body.price) != to_minor_units(class_price):
        logger.warning(
            f"Payment of {body.price} does not match class price {class_price}",
            extra={"email": email, "class_id": body.classId},
        )
        raise HTTPException(status_code=400, detail="Payment amount does not match the class price")
    if db["payments"].find_one({"transactionId": body.transactionId}):
        raise HTTPException(status_code=400, detail="Payment already recorded")
    payment = Payment(
        email=email,
        classId=body.classId,
        transactionId=body.transactionId,
        price=body.price,
        method=body.method,
        status=body.status,
    )
    return enroll_student(db, class_doc, email, payment)


@app.post("/enrollments", response_model=PurchaseResult, status_code=status.HTTP_201_CREATED)
def create_enrollment(body: EnrollmentCreate, claims=Depends(verify_token), db: Database = Depends(get_db)):
    email = normalize_email(body.email)
    ensure_self_or_admin(claims, email, db)
    class_doc = find_or_404(db, "classes", oid(body.classId), "Class")
    if float(class_doc.get("price") or 0) > 0:
        raise HTTPException(status_code=400, detail="Paid classes require a payment")
    return enroll_student(db, class_doc, email)


@app.get("/enrollments")
def list_enrollments(email: Optional[str] = None, claims=Depends(verify_token), db: Database = Depends(get_db)):
    email = require_email(email)
    ensure_self_or_admin(claims, email, db)
    enrolls = list(db["enrollments"].find({"email": email}).sort("enrolledAt", -1))
    class_ids = [ObjectId(e["classId"]) for e in enrolls if ObjectId.is_valid(e.get("classId"))]
    classes = {str(c["_id"]): c for c in db["classes"].find({"_id": {"$in": class_ids}})} if class_ids else {}
    joined = []
    for e in enrolls:
        c = classes.get(e.get("classId"))
        if c:
            e["classTitle"] = c.get("title", e.get("classTitle"))
            e["image"] = c.get("image", e.get("image"))
            e["teacherName"] = c.get("teacherName", e.get("teacherName"))
            e["classStatus"] = c.get("status")
        joined.append(serialize_doc(e))
    return joined


@app.get("/payments")
def list_payments(email: Optional[str] = None, claims=Depends(verify_token), db: Database = Depends(get_db)):
    email = require_email(email)
    ensure_self_or_admin(claims, email, db)
    return get_documents(db, "payments", {"email": email}, sort_field="paidAt")


# ----------------------
# Assignments & submissions
# ----------------------
@app.post("/assignments", response_model=ActionResult, status_code=status.HTTP_201_CREATED)
def create_assignment(body: AssignmentCreate, current=Depends(require_teacher), db: Database = Depends(get_db)):
    owned_class(db, body.classId, current)
    doc = Assignment(classId=body.classId, title=body.title, deadline=body.deadline, description=body.description)
    assignment_id = create_document(db, "assignments", doc)
    return ActionResult(message="Assignment created", insertedId=assignment_id)


@app.get("/assignments")
def list_assignments(classId: Optional[str] = None, claims=Depends(verify_token), db: Database = Depends(get_db)):
    if not classId:
        raise HTTPException(status_code=400, detail="classId is required")
    oid(classId)
    return get_documents(db, "assignments", {"classId": classId}, sort_field="createdAt")


@app.patch("/assignments/{assignment_id}", response_model=UpdateResult)
def update_assignment(
    assignment_id: str,
    body: AssignmentUpdate,
    current=Depends(require_teacher),
    db: Database = Depends(get_db),
):
    data = body.model_dump(exclude_none=True)
    if not data:
        raise HTTPException(status_code=400, detail="Nothing to update")
    assignment = find_or_404(db, "assignments", oid(assignment_id), "Assignment")
    owned_class(db, assignment["classId"], current)
    res = db["assignments"].update_one({"_id": assignment["_id"]}, {"$set": data})
    return UpdateResult(success=True, message="Assignment updated", modifiedCount=res.modified_count)


@app.patch("/assignments/{assignment_id}/increment", response_model=UpdateResult)
def increment_submission_count(assignment_id: str, claims=Depends(verify_token), db: Database = Depends(get_db)):
    res = db["assignments"].update_one({"_id": oid(assignment_id)}, {"$inc": {"submissionCount": 1}})
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="Assignment not found")
    return UpdateResult(success=True, message="Submission count incremented", modifiedCount=res.modified_count)


@app.get("/submissions/count", response_model=SubmissionCount)
def count_submissions(classId: Optional[str] = None, claims=Depends(verify_token), db: Database = Depends(get_db)):
    if not classId:
        raise HTTPException(status_code=400, detail="classId is required")
    return SubmissionCount(classId=classId, count=db["submissions"].count_documents({"classId": classId}))


@app.post("/submissions", response_model=ActionResult, status_code=status.HTTP_201_CREATED)
def create_submission(body: SubmissionCreate, claims=Depends(verify_token), db: Database = Depends(get_db)):
    student_email = normalize_email(body.studentEmail)
    ensure_self_or_admin(claims, student_email, db)
    assignment = find_or_404(db, "assignments", oid(body.assignmentId), "Assignment")
    doc = Submission(
        assignmentId=body.assignmentId,
        classId=assignment["classId"],
        studentEmail=student_email,
        answer=body.answer,
    )
    submission_id = create_document(db, "submissions", doc)
    db["assignments"].update_one({"_id": assignment["_id"]}, {"$inc": {"submissionCount": 1}})
    return ActionResult(message="Submission received", insertedId=submission_id)


# ----------------------
# Feedback
# ----------------------
@app.post("/feedback", response_model=ActionResult, status_code=status.HTTP_201_CREATED)
@app.post("/feedbacks", response_model=ActionResult, status_code=status.HTTP_201_CREATED, include_in_schema=False)
def create_feedback(body: FeedbackCreate, claims=Depends(verify_token), db: Database = Depends(get_db)):
    student_email = normalize_email(body.studentEmail)
    ensure_self_or_admin(claims, student_email, db)
    class_doc = db["classes"].find_one({"_id": oid(body.classId)}, {"title": 1})
    doc = Feedback(
        classId=body.classId,
        classTitle=class_doc.get("title") if class_doc else None,
        studentEmail=student_email,
        studentName=body.studentName or "Anonymous",
        studentImage=body.studentImage or "",
        description=body.description.strip(),
        rating=body.rating,
        createdAt=as_utc(body.createdAt),
    )
    feedback_id = create_document(db, "feedbacks", doc)
    return ActionResult(message="Feedback submitted", insertedId=feedback_id)


@app.get("/feedback")
def list_feedback(classId: Optional[str] = None, db: Database = Depends(get_db)):
    q = {"classId": classId} if classId else {}
    return get_documents(db, "feedbacks", q, sort_field="createdAt")


# ----------------------
# Progress
# ----------------------
@app.get("/class-progress/{class_id}", response_model=ProgressResponse)
async def class_progress(class_id: str, claims=Depends(verify_token), db: Database = Depends(get_db)):
    oid(class_id)
    q = {"classId": class_id}
    enrolled, assignments, submissions = await asyncio.gather(
        run_in_threadpool(db["enrollments"].count_documents, q),
        run_in_threadpool(db["assignments"].count_documents, q),
        run_in_threadpool(db["submissions"].count_documents, q),
    )
    return ProgressResponse(enrolledCount=enrolled, assignmentCount=assignments, submissionCount=submissions)


# ----------------------
# Teacher requests
# ----------------------
@app.post("/teacher/request", response_model=ActionResult, status_code=status.HTTP_201_CREATED)
def submit_teacher_request(body: TeacherRequestCreate, claims=Depends(verify_token), db: Database = Depends(get_db)):
    email = normalize_email(body.email)
    ensure_self_or_admin(claims, email, db)
    existing = db["teacherRequests"].find_one({"email": email})
    if existing:
        if existing.get("status") == "rejected":
            raise HTTPException(status_code=400, detail="Request was rejected, use resend instead")
        raise HTTPException(status_code=400, detail="Teacher request already submitted")
    doc = TeacherRequest(
        email=email,
        name=body.name,
        photo=body.photo,
        experience=body.experience,
        title=body.title,
        category=body.category,
    )
    request_id = create_document(db, "teacherRequests", doc)
    logger.info("Teacher request submitted", extra={"email": email})
    return ActionResult(message="Teacher request submitted", insertedId=request_id)


@app.get("/teacher/request")
def get_teacher_request(email: Optional[str] = None, claims=Depends(verify_token), db: Database = Depends(get_db)):
    email = require_email(email)
    ensure_self_or_admin(claims, email, db)
    doc = db["teacherRequests"].find_one({"email": email})
    if not doc:
        raise HTTPException(status_code=404, detail="Teacher request not found")
    return serialize_doc(doc)


@app.patch("/teacher/request/resend", response_model=UpdateResult)
def resend_teacher_request(body: ResendRequest, claims=Depends(verify_token), db: Database = Depends(get_db)):
    email = normalize_email(body.email)
    ensure_self_or_admin(claims, email, db)
    res = db["teacherRequests"].update_one(
        {"email": email, "status": "rejected"},
        {"$set": {"status": "pending", "updatedAt": utcnow()}},
    )
    if res.matched_count == 0:
        raise HTTPException(status_code=404, detail="No rejected request to resend")
    return UpdateResult(success=True, message="Teacher request resent", modifiedCount=res.modified_count)


@app.get("/admin/teacher-requests")
def list_teacher_requests(current=Depends(require_admin), db: Database = Depends(get_db)):
    return get_documents(db, "teacherRequests", sort_field="createdAt")


@app.patch("/admin/teacher-requests/approve/{request_id}", response_model=UpdateResult)
def approve_teacher_request(request_id: str, current=Depends(require_admin), db: Database = Depends(get_db)):
    requests = db["teacherRequests"]
    doc = find_or_404(db, "teacherRequests", oid(request_id), "Teacher request")
    if doc.get("status") == "rejected":
        logger.warning(f"Refusing to approve rejected request {request_id}", extra={"email": doc.get("email")})
        raise HTTPException(status_code=400, detail="Rejected requests cannot be approved")
    if not db["users"].find_one({"email": doc["email"]}, {"_id": 1}):
        logger.warning(f"No user account for teacher request {request_id}", extra={"email": doc.get("email")})
        raise HTTPException(status_code=404, detail="User not found")
    previous = doc.get("status", "pending")

    def accept():
        res = requests.update_one(
            {"_id": doc["_id"], "status": {"$ne": "rejected"}},
            {"$set": {"status": "accepted", "updatedAt": utcnow()}},
        )
        if res.matched_count == 0:
            raise HTTPException(status_code=400, detail="Rejected requests cannot be approved")
        return res

    accepted, _ = run_compensated([
        Step(
            "accept teacher request",
            accept,
            lambda _: requests.update_one({"_id": doc["_id"]}, {"$set": {"status": previous}}),
        ),
        Step(
            "promote user to teacher",
            lambda: db["users"].update_one(
                {"email": doc["email"], "role": {"$ne": "admin"}},
                {"$set": {"role": "teacher"}},
            ),
        ),
    ])
    logger.info("Teacher request approved", extra={"email": doc["email"]})
    return UpdateResult(success=True, message="Teacher request approved", modifiedCount=accepted.modified_count)


@app.patch("/admin/teacher-requests/reject/{request_id}", response_model=UpdateResult)
def reject_teacher_request(request_id: str, current=Depends(require_admin), db: Database = Depends(get_db)):
    doc = find_or_404(db, "teacherRequests", oid(request_id), "Teacher request")
    res = db["teacherRequests"].update_one(
        {"_id": doc["_id"], "status": {"$ne": "accepted"}},
        {"$set": {"status": "rejected", "updatedAt": utcnow()}},
    )
    if res.matched_count == 0:
        logger.warning(f"Refusing to reject accepted request {request_id}", extra={"email": doc.get("email")})
        raise HTTPException(status_code=400, detail="Accepted requests cannot be rejected")
    return UpdateResult(success=True, message="Teacher request rejected", modifiedCount=res.modified_count)


# ----------------------
# Stats
# ----------------------
@app.get("/stats/total-users")
def total_users(db: Database = Depends(get_db)):
    return {"totalUsers": db["users"].count_documents({})}


@app.get("/stats/total-classes")
def total_classes(db: Database = Depends(get_db)):
    return {"totalClasses": db["classes"].count_documents({"status": "approved"})}


@app.get("/stats/total-enrollments")
def total_enrollments(db: Database = Depends(get_db)):
    return {"totalEnrollments": db["enrollments"].count_documents({})}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 5000))
    uvicorn.run(app, host="0.0.0.0", port=port)
