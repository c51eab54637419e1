from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from lingowow.config import settings
from lingowow.core.router_guard import resolve_session_token
from lingowow.db import get_db
from lingowow.route_logging import EndpointNameRoute
from lingowow.services.auth_service import AuthAuthorizationError, clear_session_token, login_password


router = APIRouter(prefix='/auth', tags=['Auth'], route_class=EndpointNameRoute)


class PasswordLoginPayload(BaseModel):
    email: str
    password: str


@router.post('/login')
def auth_login(payload: PasswordLoginPayload, db: Session = Depends(get_db)):
    try:
        data = login_password(db, payload.email, payload.password)
    except AuthAuthorizationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    response = JSONResponse(
        {
            'success': True,
            'token': data['token'],
            'user_id': data['user_id'],
            'role': data['role'],
            'expires_at': data['expires_at'],
        }
    )
    response.set_cookie(
        key='auth_session',
        value=data['token'],
        httponly=True,
        samesite='lax',
        secure=settings.app_env == 'production',
        max_age=settings.auth_session_expiry_hours * 3600,
    )
    return response


@router.post('/logout')
def auth_logout(request: Request):
    clear_session_token(resolve_session_token(request))
    response = JSONResponse({'success': True})
    response.delete_cookie('auth_session')
    return response
