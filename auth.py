"""
Bearer-token authentication and role checks.

Routes declare the roles they accept with ``allow(*roles)``; the returned
dependency authenticates the caller and enforces the allow-list in one place.
"""

from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional

from bson import ObjectId
from fastapi import Depends, Header, Request
from pymongo.database import Database

from database import USERS, get_db, serialize_doc
from errors import Forbidden, Unauthenticated
from schemas import Role
from security import TokenSigner, get_token_signer

ALL_ROLES: FrozenSet[Role] = frozenset(Role)
STAFF: FrozenSet[Role] = frozenset({Role.seller, Role.admin})
ADMIN_ONLY: FrozenSet[Role] = frozenset({Role.admin})

_FORBIDDEN_MESSAGES = {
    ADMIN_ONLY: "Access denied. Admin only.",
    STAFF: "Access denied. Admin or Seller only.",
    frozenset({Role.user}): "Access denied. User only.",
}


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise Unauthenticated("Access denied. No token provided.")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthenticated("Access denied. No token provided.")
    return token.strip()


def authenticate(db: Database, signer: TokenSigner, token: str) -> Dict[str, Any]:
    """Resolve a token to the account it was issued for."""
    payload = signer.decode(token)
    user_id = payload["sub"]
    if not ObjectId.is_valid(user_id):
        raise Unauthenticated("Invalid token.", error="Malformed subject")
    user = db[USERS].find_one({"_id": ObjectId(user_id)})
    if not user:
        raise Unauthenticated("Invalid token. User not found.")
    return serialize_doc(user)


def require_role(account: Dict[str, Any], allowed: Iterable[Role]) -> None:
    allowed = frozenset(Role(r) for r in allowed)
    if account.get("role") not in {r.value for r in allowed}:
        raise Forbidden(_FORBIDDEN_MESSAGES.get(allowed, "Access denied."))


def get_current_account(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    db: Database = Depends(get_db),
    signer: TokenSigner = Depends(get_token_signer),
) -> Dict[str, Any]:
    account = authenticate(db, signer, bearer_token(authorization))
    request.state.account = account
    return account


def optional_account(
    authorization: Optional[str] = Header(default=None),
    db: Database = Depends(get_db),
    signer: TokenSigner = Depends(get_token_signer),
) -> Optional[Dict[str, Any]]:
    """Like get_current_account, but an absent header yields None."""
    if not authorization:
        return None
    return authenticate(db, signer, bearer_token(authorization))


def allow(*roles: Role) -> Callable[..., Dict[str, Any]]:
    """Build a dependency admitting authenticated accounts with one of ``roles``."""
    allowed = frozenset(roles) or ALL_ROLES

    def dependency(account: Dict[str, Any] = Depends(get_current_account)) -> Dict[str, Any]:
        require_role(account, allowed)
        return account

    return dependency
