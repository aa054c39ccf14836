"""Account registration, login and profile management."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import META, USERS, parse_object_id, serialize_doc
from errors import Conflict, InvalidCredentials, InvalidRequest, NotFound
from schemas import Role, User
from security import PasswordHasher, TokenSigner

logger = logging.getLogger(__name__)


def public_account(doc: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize an account document without its password hash."""
    account = serialize_doc(doc)
    if account:
        account.pop("password_hash", None)
    return account


def register(
    db: Database,
    hasher: PasswordHasher,
    name: str,
    email: str,
    password: str,
    role: Role = Role.user,
) -> Dict[str, Any]:
    if db[USERS].find_one({"email": email}):
        raise Conflict("User already exists with this email")
    user_model = User(
        name=name,
        email=email,
        password_hash=hasher.hash(password),
        role=role,
    )
    try:
        result = db[USERS].insert_one(user_model.model_dump())
    except DuplicateKeyError:
        # lost a race against a concurrent registration
        raise Conflict("User already exists with this email")
    logger.info("Registered %s account %s", user_model.role, result.inserted_id)
    return public_account(db[USERS].find_one({"_id": result.inserted_id}))


def login(
    db: Database,
    hasher: PasswordHasher,
    signer: TokenSigner,
    email: str,
    password: str,
    role: Optional[Role] = None,
    failure_message: str = "Invalid email or password",
) -> Tuple[str, Dict[str, Any]]:
    """Check credentials and issue a token.

    With ``role`` set only accounts of that role can log in. Unknown email and
    wrong password fail with the same message.
    """
    query: Dict[str, Any] = {"email": email}
    if role is not None:
        query["role"] = Role(role).value
    user = db[USERS].find_one(query)
    if not user or not hasher.verify(password, user.get("password_hash", "")):
        raise InvalidCredentials(failure_message)
    token = signer.issue(str(user["_id"]), user["role"])
    return token, public_account(user)


def change_password(
    db: Database,
    hasher: PasswordHasher,
    account: Dict[str, Any],
    current_password: str,
    new_password: str,
) -> None:
    if not hasher.verify(current_password, account.get("password_hash", "")):
        raise InvalidCredentials("Current password is incorrect")
    db[USERS].update_one(
        {"_id": parse_object_id(account["id"])},
        {"$set": {"password_hash": hasher.hash(new_password), "updated_at": datetime.now(timezone.utc)}},
    )


def update_profile(db: Database, account: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
    """Partially update name and email; the email must stay unique."""
    update = {k: v for k, v in fields.items() if k in ("name", "email") and v is not None}
    if not update:
        raise InvalidRequest("No fields to update")
    account_id = parse_object_id(account["id"])
    if "email" in update:
        holder = db[USERS].find_one({"email": update["email"], "_id": {"$ne": account_id}})
        if holder:
            raise Conflict("User already exists with this email")
    update["updated_at"] = datetime.now(timezone.utc)
    try:
        user = db[USERS].find_one_and_update(
            {"_id": account_id},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
    except DuplicateKeyError:
        raise Conflict("User already exists with this email")
    if not user:
        raise NotFound("User not found")
    return public_account(user)


def get_account(db: Database, account_id: str) -> Dict[str, Any]:
    user = db[USERS].find_one({"_id": parse_object_id(account_id, "user id")})
    if not user:
        raise NotFound("User not found")
    return public_account(user)


def list_accounts(db: Database, role: Role) -> List[Dict[str, Any]]:
    return [public_account(u) for u in db[USERS].find({"role": Role(role).value})]


def accounts_by_id(db: Database, ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
    object_ids = [parse_object_id(i, "user id") for i in set(ids)]
    found = db[USERS].find({"_id": {"$in": object_ids}}, {"name": 1, "email": 1})
    return {str(u["_id"]): {"name": u.get("name"), "email": u.get("email")} for u in found}


def delete_account(db: Database, account_id: str) -> None:
    res = db[USERS].delete_one({"_id": parse_object_id(account_id, "user id")})
    if res.deleted_count == 0:
        raise NotFound("User not found")
    logger.info("Deleted account %s", account_id)


def set_role(db: Database, account_id: str, role: str) -> Dict[str, Any]:
    if role not in {r.value for r in Role}:
        raise InvalidRequest("Invalid role. Must be admin, user, or seller")
    user = db[USERS].find_one_and_update(
        {"_id": parse_object_id(account_id, "user id")},
        {"$set": {"role": role, "updated_at": datetime.now(timezone.utc)}},
        return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise NotFound("User not found")
    logger.info("Account %s role set to %s", account_id, role)
    return public_account(user)


def admin_exists(db: Database) -> bool:
    return db[USERS].find_one({"role": Role.admin.value}) is not None


ADMIN_BOOTSTRAP = "admin-bootstrap"


def claim_admin_bootstrap(db: Database) -> bool:
    """Claim the one unauthenticated admin creation. Only the first caller wins."""
    if admin_exists(db):
        return False
    try:
        db[META].insert_one({"_id": ADMIN_BOOTSTRAP, "claimed_at": datetime.now(timezone.utc)})
    except DuplicateKeyError:
        return False
    return True


def release_admin_bootstrap(db: Database) -> None:
    db[META].delete_one({"_id": ADMIN_BOOTSTRAP})
