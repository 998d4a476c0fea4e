from fastapi import APIRouter, Depends, HTTPException

from huddle.auth import Session, create_access_token, require_session
from huddle.config import settings
from huddle.models import AuthLoginRequest, AuthLoginResponse, AuthMeResponse

router = APIRouter(prefix="/auth", tags=["auth"])

DEV_LOGIN_PASSWORD = "huddle-demo"


@router.post("/login", response_model=AuthLoginResponse)
def login(payload: AuthLoginRequest):
    # Production sessions come from the identity provider; this only mints local dev tokens.
    if not settings.auth_dev_login_enabled:
        raise HTTPException(status_code=404, detail="Not found")
    user_id = payload.user_id.strip()
    if not user_id:
        raise HTTPException(status_code=400, detail="user_id is required")
    if payload.password != DEV_LOGIN_PASSWORD:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token, expires_at = create_access_token(user_id=user_id)
    return AuthLoginResponse(access_token=token, user_id=user_id, expires_at=expires_at)


@router.get("/me", response_model=AuthMeResponse)
def me(session: Session = Depends(require_session)):
    return AuthMeResponse(user_id=session.user_id, is_platform_admin=session.is_platform_admin)
