"""
Database Schemas for the Edu Platform

Each Pydantic model describes the documents of one MongoDB collection. Handlers
build these models before inserting so that defaults (status, counters,
timestamps) are applied in one place.
"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from database import utcnow

Role = Literal["student", "teacher", "admin"]
ClassStatus = Literal["pending", "approved", "rejected"]
RequestStatus = Literal["pending", "accepted", "rejected"]


class User(BaseModel):
    email: str = Field(..., description="Lowercased email, unique key")
    displayName: Optional[str] = Field(None, description="Name shown in the UI")
    photoURL: Optional[str] = Field(None, description="Profile picture URL")
    role: Role = Field("student", description="User role")
    created_at: datetime = Field(default_factory=utcnow)


class Class(BaseModel):
    title: str
    teacherEmail: str = Field(..., description="Owner teacher email (lowercased)")
    teacherName: Optional[str] = None
    price: float = Field(..., ge=0, allow_inf_nan=False)
    description: Optional[str] = None
    image: Optional[str] = None
    status: ClassStatus = "pending"
    enrolled: int = Field(0, description="Enrollment counter, incremented per enrollment")
    createdAt: datetime = Field(default_factory=utcnow)


class Enrollment(BaseModel):
    email: str
    classId: str
    classTitle: str
    teacherName: Optional[str] = None
    image: Optional[str] = None
    price: float = 0.0
    paymentId: Optional[str] = None
    enrolledAt: datetime = Field(default_factory=utcnow)


class Payment(BaseModel):
    email: str
    classId: str
    transactionId: str
    price: float
    method: str = "card"
    status: str = "succeeded"
    paidAt: datetime = Field(default_factory=utcnow)


class Assignment(BaseModel):
    classId: str
    title: str
    deadline: str
    description: Optional[str] = None
    submissionCount: int = 0
    createdAt: datetime = Field(default_factory=utcnow)


class Submission(BaseModel):
    assignmentId: str
    classId: str
    studentEmail: str
    answer: str
    submittedAt: datetime = Field(default_factory=utcnow)


class Feedback(BaseModel):
    classId: str
    classTitle: Optional[str] = None
    studentEmail: str
    studentName: str = "Anonymous"
    studentImage: str = ""
    description: str
    rating: float = Field(..., ge=1, le=5)
    createdAt: datetime


class TeacherRequest(BaseModel):
    email: str
    name: str
    photo: Optional[str] = None
    experience: str
    title: str
    category: str
    status: RequestStatus = "pending"
    createdAt: datetime = Field(default_factory=utcnow)
    updatedAt: datetime = Field(default_factory=utcnow)
