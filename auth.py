from typing import Iterator

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from csrf import CSRF_HEADER, generate_csrf_token, validate_csrf_token
from database import SessionLocal
from models import User
from repository import Repository, SQLRepository
from schemas import SessionOut, UserOut

SESSION_USER_KEY = "user_id"


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_repository(db: Session = Depends(get_db)) -> Repository:
    return SQLRepository(db)


def start_session(request: Request, user: User) -> SessionOut:
    request.session.clear()
    request.session[SESSION_USER_KEY] = user.id
    return SessionOut(
        user=UserOut.model_validate(user), csrf_token=generate_csrf_token(user.id)
    )


def end_session(request: Request) -> None:
    request.session.clear()


def current_user(request: Request, repo: Repository = Depends(get_repository)) -> User:
    user_id = request.session.get(SESSION_USER_KEY)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = repo.get_user(user_id)
    if user is None:
        request.session.clear()
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def csrf_protected_user(request: Request, user: User = Depends(current_user)) -> User:
    token = request.headers.get(CSRF_HEADER, "")
    if not validate_csrf_token(token, user.id):
        raise HTTPException(status_code=400, detail="Invalid CSRF token")
    return user


def require_admin(user: User = Depends(current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def csrf_protected_admin(user: User = Depends(csrf_protected_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
