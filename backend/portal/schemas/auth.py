from __future__ import annotations
from typing import Literal
from pydantic import BaseModel, EmailStr, Field
from uuid import UUID
from datetime import datetime

Role = Literal["developer", "evaluator"]

class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    role: Role = "developer"

class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    next: str | None = None

class UserPublic(BaseModel):
    id: UUID
    email: EmailStr
    role: Role | None = None
    created_at: datetime

class TokenPair(BaseModel):
    access: str
    refresh: str

class LoginResult(TokenPair):
    role: Role
    destination: str

class ProfileRequest(BaseModel):
    role: Role | None = None
    next: str | None = None

class ProfileResult(BaseModel):
    created: bool
    role: Role
    destination: str

class GuardResult(BaseModel):
    state: Literal["allowed", "redirect_login", "redirect_forbidden"]
    redirect: str | None = None
