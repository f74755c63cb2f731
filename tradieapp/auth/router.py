import secrets
import uuid
from datetime import timedelta

import structlog
from fastapi import APIRouter, Depends, Request
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..errors import Unauthenticated
from ..models.models import Organization, OrganizationMember, User, VerificationCode
from ..schemas.auth import (
    MeResponse,
    MembershipOut,
    MobileTokenResponse,
    SendCodeRequest,
    SendCodeResponse,
    UserOut,
    VerifyCodeRequest,
)
from ..services.authorization import MembershipStatus
from ..services.mailer import send_email
from ..services.time_rules import as_utc, utcnow
from .security import get_current_user, hash_code, verify_code
from .tokens import (
    VERIFICATION_TOKEN,
    TokenInvalid,
    create_mobile_token,
    create_verification_token,
    decode_token,
    extract_bearer_token,
)


router = APIRouter(prefix="/auth", tags=["auth"])
logger = structlog.get_logger(__name__)


def generate_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


@router.post("/mobile/send-code", response_model=SendCodeResponse)
def send_code(req: SendCodeRequest, db: Session = Depends(get_db)):
    email = req.email.lower()
    user = db.query(User).filter(func.lower(User.email) == email).first()
    # Unknown emails get the same response so accounts cannot be enumerated
    if user is not None:
        code = generate_code()
        now = utcnow()
        db.add(
            VerificationCode(
                user_id=user.id,
                email=email,
                code_hash=hash_code(code),
                expires_at=now + timedelta(seconds=settings.verification_token_ttl_seconds),
            )
        )
        db.commit()
        send_email(
            user.email,
            f"Your {settings.app_name} sign-in code",
            f"Your sign-in code is {code}. It expires in {settings.verification_token_ttl_seconds // 60} minutes.",
        )
        logger.info("verification_code_issued", user_id=str(user.id))
    return SendCodeResponse(
        verification_token=create_verification_token(email),
        expires_in=settings.verification_token_ttl_seconds,
    )


@router.post("/mobile/verify-code", response_model=MobileTokenResponse)
def verify_mobile_code(req: VerifyCodeRequest, db: Session = Depends(get_db)):
    try:
        claims = decode_token(req.verification_token, expected_type=VERIFICATION_TOKEN)
    except TokenInvalid:
        raise Unauthenticated("Invalid or expired code")
    now = utcnow()
    candidates = (
        db.query(VerificationCode)
        .filter(VerificationCode.email == claims["email"], VerificationCode.used_at.is_(None))
        .order_by(VerificationCode.created_at.desc())
        .with_for_update()
        .all()
    )
    live = [
        c
        for c in candidates
        if as_utc(c.expires_at) >= now and (c.attempts or 0) < settings.verification_max_attempts
    ]
    match = next((c for c in live if verify_code(req.code, c.code_hash)), None)
    if match is None:
        for candidate in live:
            candidate.attempts = (candidate.attempts or 0) + 1
        db.commit()
        logger.info("verification_code_rejected", live_codes=len(live))
        raise Unauthenticated("Invalid or expired code")
    user = db.query(User).filter(User.id == match.user_id).first()
    if user is None:
        raise Unauthenticated("Invalid or expired code")
    match.used_at = now
    db.commit()
    token = create_mobile_token(user.id, user.external_identity_id, user.email)
    logger.info("mobile_token_issued", user_id=str(user.id))
    return MobileTokenResponse(
        token=token,
        expires_in=settings.mobile_token_ttl_seconds,
        user=UserOut.model_validate(user),
    )


@router.get("/mobile/verify")
def verify_mobile_token(request: Request, db: Session = Depends(get_db)):
    token = extract_bearer_token(request.headers.get("Authorization"))
    if token is None:
        raise Unauthenticated()
    try:
        claims = decode_token(token)
    except TokenInvalid:
        raise Unauthenticated()
    try:
        user_id = uuid.UUID(str(claims["user_id"]))
    except ValueError:
        raise Unauthenticated()
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise Unauthenticated()
    return {"valid": True, "user": UserOut.model_validate(user)}


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = (
        db.query(OrganizationMember, Organization)
        .join(Organization, Organization.id == OrganizationMember.organization_id)
        .filter(
            OrganizationMember.user_id == user.id,
            OrganizationMember.status == MembershipStatus.ACTIVE.value,
        )
        .order_by(Organization.name)
        .all()
    )
    return MeResponse(
        user=UserOut.model_validate(user),
        memberships=[membership_out(m, org) for m, org in rows],
    )


def membership_out(m: OrganizationMember, org: Organization) -> MembershipOut:
    return MembershipOut(
        organization_id=org.id,
        organization_name=org.name,
        role=m.role,
        status=m.status,
        can_create_jobs=m.can_create_jobs,
        can_edit_all_jobs=m.can_edit_all_jobs,
        can_create_invoices=m.can_create_invoices,
        can_view_financials=m.can_view_financials,
        can_approve_expenses=m.can_approve_expenses,
        can_approve_timesheets=m.can_approve_timesheets,
        joined_at=m.joined_at,
    )
