from __future__ import annotations
from typing import Literal
from pydantic import BaseModel
from uuid import UUID
from datetime import datetime

Decision = Literal["accepted", "rejected"]


class SubmissionPublic(BaseModel):
    id: int
    user_id: UUID
    full_name: str
    email: str
    phone: str
    location: str
    hobby: str | None = None
    feedback: str | None = None
    status: str | None = None
    created_at: datetime
    # resolved public links; None renders as "not available"
    profile_picture_url: str | None = None
    zip_file_url: str | None = None


class ReviewOutcomePublic(BaseModel):
    submission_id: int
    status: Decision
    persisted: bool
    notified: bool
    warning: str | None = None
