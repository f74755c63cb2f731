import uuid

from fastapi import Depends, Request
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..db import get_db
from ..errors import Unauthenticated
from ..models.models import User


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_code(code: str) -> str:
    return pwd_context.hash(code)


def verify_code(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        return False


def get_current_user_id(request: Request, db: Session = Depends(get_db)) -> uuid.UUID:
    return request.app.state.authenticator.authenticate(request, db)


def get_current_user(
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise Unauthenticated()
    return user
