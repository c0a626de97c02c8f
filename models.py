from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)

from db import Base
from utils import utc_now


class Student(Base):
    __tablename__ = "students"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(255), nullable=False, default="")
    last_name = Column(String(255), nullable=False, default="")
    email = Column(String(255), nullable=False, unique=True, index=True)
    phone = Column(String(20), nullable=True, index=True)
    address = Column(Text, nullable=True)
    zeta_id = Column(String(255), nullable=False, unique=True, index=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now)


class AuthorizedUser(Base):
    __tablename__ = "authorized_users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)
    role = Column(String(50), nullable=False, default="user")
    is_superadmin = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now)


class InterviewSession(Base):
    __tablename__ = "interview_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False, default="")
    description = Column(Text, nullable=True)
    status = Column(String(50), nullable=False, default="active")
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now)


class Interview(Base):
    __tablename__ = "interviews"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Integer, ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    interviewer_id = Column(Integer, ForeignKey("authorized_users.id", ondelete="SET NULL"), nullable=True, index=True)
    session_id = Column(Integer, ForeignKey("interview_sessions.id", ondelete="CASCADE"), nullable=True, index=True)
    status = Column(String(50), nullable=False, default="in_progress", index=True)
    verdict = Column(Text, nullable=True)
    notes = Column(Text, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now, index=True)
    updated_at = Column(DateTime, nullable=True, default=utc_now)


class InterviewQuestion(Base):
    __tablename__ = "interview_questions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    interview_id = Column(Integer, ForeignKey("interviews.id", ondelete="CASCADE"), nullable=False, index=True)
    question_text = Column(Text, nullable=False, default="")
    answer_text = Column(Text, nullable=True)
    answer_photo_url = Column(Text, nullable=True)
    score = Column(Integer, nullable=True)
    is_correct = Column(Boolean, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)


class QuestionBankItem(Base):
    __tablename__ = "question_bank"

    id = Column(Integer, primary_key=True, autoincrement=True)
    question_text = Column(Text, nullable=False, default="")
    category = Column(String(255), nullable=True, index=True)
    tags = Column(JSON, nullable=True)
    usage_count = Column(Integer, nullable=False, default=0)
    created_by = Column(Integer, ForeignKey("authorized_users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now)


class InterviewConsolidation(Base):
    __tablename__ = "interview_consolidation"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Integer, nullable=False, index=True)
    session_id = Column(Integer, nullable=True, index=True)
    student_name = Column(Text, nullable=False, default="")
    student_email = Column(Text, nullable=False, default="")
    zeta_id = Column(Text, nullable=False, default="")
    session_name = Column(Text, nullable=False, default="")
    interview_ids = Column(JSON, nullable=False, default=list)
    interviewer_ids = Column(JSON, nullable=False, default=list)
    interviewer_names = Column(JSON, nullable=False, default=list)
    verdicts = Column(JSON, nullable=False, default=list)
    status = Column(String(50), nullable=True, index=True)
    last_interview_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now)


class EmailLog(Base):
    __tablename__ = "email_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    consolidation_id = Column(
        Integer, ForeignKey("interview_consolidation.id", ondelete="CASCADE"), nullable=True, index=True
    )
    to_emails = Column(JSON, nullable=False, default=list)
    subject = Column(Text, nullable=True)
    body = Column(Text, nullable=True)
    status = Column(String(50), nullable=False, default="queued", index=True)
    sent_by = Column(Integer, ForeignKey("authorized_users.id", ondelete="SET NULL"), nullable=True)
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)


class StudentActivityLog(Base):
    __tablename__ = "student_activity_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Integer, nullable=False, index=True)
    session_id = Column(Integer, nullable=True, index=True)
    activity_type = Column(String(50), nullable=False, index=True)
    activity_description = Column(Text, nullable=False, default="")
    # `metadata` is reserved on declarative classes.
    meta = Column("metadata", JSON, nullable=False, default=dict)
    performed_by = Column(Integer, nullable=True)
    # sha256 hex of the value telling events of one type apart (interview id, verdict, email log id, status).
    dedupe_key = Column(String(64), nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=utc_now, index=True)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    correlation_id = Column(String(64), nullable=True, index=True)
    user_id = Column(Integer, nullable=True, index=True)
    user_email = Column(String(255), nullable=True, index=True)
    user_role = Column(String(50), nullable=True)
    action_type = Column(String(50), nullable=False, index=True)
    action_name = Column(Text, nullable=False, default="")
    method = Column(String(10), nullable=True)
    endpoint = Column(Text, nullable=True)
    request_headers = Column(JSON, nullable=True)
    request_body = Column(JSON, nullable=True)
    query_params = Column(JSON, nullable=True)
    status_code = Column(Integer, nullable=True)
    response_body = Column(JSON, nullable=True)
    response_time_ms = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    error_code = Column(String(100), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    resource_type = Column(String(50), nullable=True)
    resource_id = Column(String(64), nullable=True)
    success = Column(Boolean, nullable=False, default=True, index=True)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now, index=True)
