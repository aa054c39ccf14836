"""
Password hashing and token signing.

Both are exposed as small classes behind FastAPI dependencies so the
application can swap them (tests use a cheap bcrypt cost).
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from errors import Unauthenticated

load_dotenv()

# JWT Config
SECRET_KEY = os.getenv("JWT_SECRET", "dev-secret-change")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_HOURS = int(os.getenv("ACCESS_TOKEN_EXPIRE_HOURS", "24"))
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "10"))


class PasswordHasher:
    def __init__(self, rounds: int = BCRYPT_ROUNDS):
        self.context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    def hash(self, password: str) -> str:
        return self.context.hash(password)

    def verify(self, plain_password: str, hashed_password: str) -> bool:
        if not hashed_password:
            return False
        try:
            return self.context.verify(plain_password, hashed_password)
        except ValueError:
            # stored value is not a recognised hash
            return False


class TokenSigner:
    def __init__(
        self,
        secret: str = SECRET_KEY,
        algorithm: str = ALGORITHM,
        expires_delta: Optional[timedelta] = None,
    ):
        self.secret = secret
        self.algorithm = algorithm
        self.expires_delta = expires_delta or timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS)

    def issue(self, account_id: str, role: str, now: Optional[datetime] = None) -> str:
        issued = now or datetime.now(timezone.utc)
        to_encode = {"sub": account_id, "role": role, "iat": issued, "exp": issued + self.expires_delta}
        return jwt.encode(to_encode, self.secret, algorithm=self.algorithm)

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise Unauthenticated("Invalid token.", error="Token has expired")
        except JWTError as exc:
            raise Unauthenticated("Invalid token.", error=str(exc))
        if not payload.get("sub"):
            raise Unauthenticated("Invalid token.", error="Token has no subject")
        return payload


_hasher = PasswordHasher()
_signer = TokenSigner()


def get_password_hasher() -> PasswordHasher:
    return _hasher


def get_token_signer() -> TokenSigner:
    return _signer
