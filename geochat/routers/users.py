# Registration / login / profile API
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from geochat.crud.user_crud import (
    authenticate,
    create_temporary_user,
    get_user,
    register_user,
    reset_password,
    update_nickname,
    update_password,
)
from geochat.database import get_db
from geochat.models.user import User
from geochat.schemas.common import ok
from geochat.schemas.user import (
    LoginBody,
    NicknameBody,
    PasswordBody,
    RegisterUserBody,
    ResetPasswordBody,
    TemporaryUserBody,
    TokenOut,
    UserOut,
)
from geochat.services.auth import get_current_user_id, issue_token
from geochat.services.rate_limit import rate_limit

router = APIRouter(prefix="/users", tags=["Users"], dependencies=[Depends(rate_limit)])


def _token_response(user: User, recovery_code=None) -> TokenOut:
    token, expires_at = issue_token(user.user_id, temporary=user.is_temporary)
    return TokenOut(
        user_id=user.user_id,
        nickname=user.nickname,
        token=token,
        expires_at=expires_at,
        is_temporary=user.is_temporary,
        recovery_code=recovery_code,
    )


@router.post("/register")
def post_register(body: RegisterUserBody, db: Session = Depends(get_db)):
    """Register with a chosen user_id. The recovery code is shown once."""
    try:
        user, recovery_code = register_user(db, body.user_id, body.password, body.nickname)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return ok(_token_response(user, recovery_code=recovery_code))


@router.post("/temporary")
def post_temporary(body: Optional[TemporaryUserBody] = None, db: Session = Depends(get_db)):
    try:
        user = create_temporary_user(db, body.nickname if body else None)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return ok(_token_response(user))


@router.post("/login")
def post_login(body: LoginBody, db: Session = Depends(get_db)):
    user = authenticate(db, body.user_id, body.password)
    return ok(_token_response(user))


@router.get("/me")
def get_me(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return ok(UserOut.model_validate(get_user(db, user_id)))


@router.patch("/me/nickname")
def patch_nickname(
    body: NicknameBody,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        user = update_nickname(db, user_id, body.nickname)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return ok(UserOut.model_validate(user))


@router.patch("/me/password")
def patch_password(
    body: PasswordBody,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        update_password(db, user_id, body.old_password, body.new_password)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return ok()


@router.post("/reset-password")
def post_reset_password(body: ResetPasswordBody, db: Session = Depends(get_db)):
    """Recovery code → new password. Returns the next recovery code."""
    try:
        next_code = reset_password(db, body.user_id, body.reset_code, body.new_password)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return ok({"recovery_code": next_code})


@router.post("/refresh-token")
def post_refresh_token(user_id: str = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return ok(_token_response(get_user(db, user_id)))
