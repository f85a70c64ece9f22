"""
Pydantic schemas for authentication endpoints (signup and login).

If a required field is missing or the wrong type, FastAPI returns a 422 error
before our code even runs.
"""

import uuid

from pydantic import BaseModel, EmailStr, Field


class UserSignupRequest(BaseModel):
    """Request body for POST /auth/signup."""
    email: EmailStr
    password: str = Field(min_length=8)
    full_name: str = Field(min_length=1, max_length=200)
    # ISO 3166 alpha-2; drives which payment rails are available
    country: str = Field(pattern=r"^[A-Za-z]{2}$")
    # ISO 4217; the balance currency
    currency: str = Field(pattern=r"^[A-Za-z]{3}$")
    phone: str | None = Field(None, max_length=20)


class UserLoginRequest(BaseModel):
    """Request body for POST /auth/login."""
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    # Lets the dashboard pick the merchant or the admin view
    user_type: str


class SignupResponse(BaseModel):
    user_id: uuid.UUID
    email: str
    user_type: str
    token: str
    token_type: str = "bearer"
