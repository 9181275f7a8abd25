import logging

from fastapi import APIRouter, HTTPException, Request

from ..mailer import MailDeliveryError
from ..otp import OtpThrottled
from ..schemas import OtpRequest, OtpRequestOut, OtpVerifyOut, OtpVerifyRequest
from ..security import create_access_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/otp", tags=["OTP"])


@router.post("/request", response_model=OtpRequestOut, response_model_exclude_none=True)
def request_otp(body: OtpRequest, request: Request):
    """
    Issues a 6-digit code for the voter and delivers it by e-mail.
    In demo mode without a mail server the code is returned to the client.
    """
    state = request.app.state
    try:
        issued = state.otp_gate.issue(body.voterId, body.email)
    except OtpThrottled as e:
        raise HTTPException(
            status_code=429, detail=e.reason, headers={"Retry-After": str(e.retry_after)}
        )
    try:
        delivered = state.mailer.send(body.email, issued.code, issued.expires_at)
    except MailDeliveryError:
        raise HTTPException(status_code=502, detail="mail_delivery_failed")

    demo_code = issued.code if (not delivered and state.mailer.demo_mode) else None
    return OtpRequestOut(exp=issued.expires_at, demoCode=demo_code)


@router.post("/verify", response_model=OtpVerifyOut)
def verify_otp(body: OtpVerifyRequest, request: Request):
    result = request.app.state.otp_gate.verify(body.voterId, body.code)
    if not result.ok:
        raise HTTPException(status_code=400, detail=result.reason)
    return OtpVerifyOut(accessToken=create_access_token(body.voterId))
