from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from lingowow.core.router_guard import authorize, require_auth_user
from lingowow.db import get_db
from lingowow.route_logging import EndpointNameRoute
from lingowow.models import Role, User


router = APIRouter(prefix='/users', tags=['Users'], route_class=EndpointNameRoute)


@router.get('')
def list_users(request: Request, role: str | None = None, db: Session = Depends(get_db)):
    user = require_auth_user(request)
    authorize(user, 'users:list')
    query = db.query(User).filter(User.is_active.is_(True))
    if role:
        clean_role = role.strip().lower()
        if clean_role not in {r.value for r in Role}:
            raise HTTPException(status_code=400, detail='Rol inválido')
        query = query.filter(User.role == clean_role)
    rows = query.order_by(User.name.asc(), User.id.asc()).all()
    return {
        'success': True,
        'users': [
            {
                'id': r.id,
                'email': r.email,
                'name': r.full_name,
                'role': r.role,
                'teacher_rank': r.teacher_rank.name if r.teacher_rank else None,
            }
            for r in rows
        ],
    }
