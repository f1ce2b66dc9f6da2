"""Authentication schemas for session identity and one-time-code sign-in."""

from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class UserContext(BaseModel):
    """Authenticated user context resolved from a session access token.

    Populated by the auth middleware from the identity provider's view of
    the token, not from client-supplied claims.
    """

    model_config = ConfigDict(from_attributes=True)

    user_id: UUID = Field(description="Unique identifier for the account")
    email: str | None = Field(default=None, description="User's email address if available")
    email_verified: bool = Field(default=False, description="Whether the identity provider confirmed the email")
    access_token: str = Field(default="", repr=False, description="Bearer token the request was made with")


class OtpRequest(BaseModel):
    """Request schema for sending a one-time sign-in code."""

    model_config = ConfigDict(from_attributes=True)

    email: str = Field(..., description="User's email address", min_length=3, max_length=255)


class OtpRequestResponse(BaseModel):
    """Response schema for sending a one-time sign-in code."""

    model_config = ConfigDict(from_attributes=True)

    message: str = Field(description="Status message")
    email_sent: bool = Field(description="Whether the code email was sent")


class OtpVerifyRequest(BaseModel):
    """Request schema for verifying a one-time sign-in code."""

    model_config = ConfigDict(from_attributes=True)

    email: str = Field(..., description="User's email address", min_length=3, max_length=255)
    code: str = Field(..., description="One-time code from the email", min_length=4, max_length=12)


class OtpVerifyResponse(BaseModel):
    """Response schema for a verified one-time code."""

    model_config = ConfigDict(from_attributes=True)

    access_token: str = Field(description="Session access token")
    refresh_token: str | None = Field(default=None, description="Refresh token if available")
    user_id: str = Field(description="User ID")
    email: str | None = Field(default=None, description="User's email address")
    expires_in: int | None = Field(default=None, description="Token expiration time in seconds")
