import secrets
import string
from typing import Optional

import jwt
from fastapi import HTTPException, status
from passlib.context import CryptContext

from labsync.config.settings import settings


pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def generate_random_password(length: int = 12) -> str:
    alphabet = string.ascii_letters + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expirado")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token inválido")


def get_user_id_from_token(token: str) -> Optional[int]:
    payload = decode_token(token)
    sub = payload.get("sub")
    try:
        return int(sub)
    except (TypeError, ValueError):
        return None
