"""Authentication API routes."""

from fastapi import APIRouter

from src.schemas.auth import OtpRequest, OtpRequestResponse, OtpVerifyRequest, OtpVerifyResponse
from src.services.auth_service import AuthService

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/otp",
    response_model=OtpRequestResponse,
    summary="Send sign-in code",
    description="Emails a one-time sign-in code. New addresses get an account on first sign-in.",
)
async def send_code(data: OtpRequest) -> OtpRequestResponse:
    """Send a one-time sign-in code.

    Args:
        data: Request with the email address.

    Returns:
        OtpRequestResponse: Whether the email was sent.

    Raises:
        ValidationError: 400 if the code could not be sent.
    """
    service = AuthService()
    result = await service.send_one_time_code(data.email)
    return OtpRequestResponse(**result)


@router.post(
    "/otp/verify",
    response_model=OtpVerifyResponse,
    summary="Verify sign-in code",
    description="Exchanges a one-time code for session tokens.",
)
async def verify_code(data: OtpVerifyRequest) -> OtpVerifyResponse:
    """Verify a one-time code and return a session.

    Raises:
        ValidationError: 400 if the code is wrong or expired.
    """
    service = AuthService()
    result = await service.verify_one_time_code(data.email, data.code)
    return OtpVerifyResponse(**result)
