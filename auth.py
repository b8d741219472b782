import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Optional

from fastapi import Depends, Header, HTTPException
from pymongo.errors import DuplicateKeyError

import config
from access import ELEVATED_ROLES, SUPER_ADMIN, require_role, resolve_role
from database import as_utc, get_db, now
from errors import Conflict, PermissionDenied
from gateway import Gateway

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 200_000


def hash_password(password: str, salt: Optional[str] = None) -> tuple[str, str]:
    if not salt:
        salt = secrets.token_hex(16)
    dk = hashlib.pbkdf2_hmac(
        "sha256", password.encode(), bytes.fromhex(salt), PBKDF2_ITERATIONS
    )
    return dk.hex(), salt


def verify_password(password: str, stored_hash: str, salt: str) -> bool:
    dk_hex, _ = hash_password(password, salt)
    return secrets.compare_digest(dk_hex, stored_hash)


def authenticate(db, email: str, password: str) -> Optional[dict]:
    user = Gateway(db, "users").find_one({"email": email.lower()})
    if not user or not user.get("passwordHash"):
        return None
    if not verify_password(password, user["passwordHash"], user["passwordSalt"]):
        return None
    if user.get("status") in ("suspended", "locked", "terminated"):
        logger.warning(f"[Auth] Login refused for {user['status']} account {user['id']}")
        return None
    return user


def open_session(db, user_id: str) -> str:
    token = secrets.token_urlsafe(32)
    stamp = now()
    db["sessions"].insert_one({"userId": user_id, "token": token, "createdAt": stamp, "lastSeenAt": stamp})
    return token


def close_session(db, token: str) -> None:
    db["sessions"].delete_one({"token": token})


def session_user(db, token: str) -> Optional[dict]:
    """User behind a token, or None when unknown or idle too long."""
    session = db["sessions"].find_one({"token": token})
    if not session:
        return None
    idle_limit = timedelta(minutes=config.SESSION_IDLE_MINUTES)
    if now() - as_utc(session["lastSeenAt"]) > idle_limit:
        db["sessions"].delete_one({"_id": session["_id"]})
        logger.info(f"[Auth] Session for {session['userId']} expired after inactivity")
        return None
    user = Gateway(db, "users").get(session["userId"])
    if not user:
        return None
    db["sessions"].update_one({"_id": session["_id"]}, {"$set": {"lastSeenAt": now()}})
    user["role"] = resolve_role(user.get("role"))
    return user


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1]


# Auth dependency
def get_current_user(authorization: Optional[str] = Header(None), db=Depends(get_db)):
    token = bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Missing token")
    user = session_user(db, token)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user


# Users

def create_user(db, actor: Optional[dict], name: str, email: str, password: str, role: str = "User", company_id: Optional[str] = None) -> dict:
    """Create an account. ``actor`` is None only for the bootstrap admin."""
    if actor is not None:
        require_role(actor, ELEVATED_ROLES)
        if role == SUPER_ADMIN and resolve_role(actor.get("role")) != SUPER_ADMIN:
            raise PermissionDenied("Only a Super Admin can create Super Admins")
        if resolve_role(actor.get("role")) != SUPER_ADMIN:
            # Admins add people to their own company only
            company_id = actor.get("companyId")

    pwd_hash, salt = hash_password(password)
    users = Gateway(db, "users")
    if users.find_one({"email": email.lower()}):
        raise Conflict("Email already registered")
    try:
        user = users.create({
            "name": name,
            "email": email.lower(),
            "role": role,
            "companyId": company_id,
            "passwordHash": pwd_hash,
            "passwordSalt": salt,
            "status": "active",
            # Admins skip onboarding, regular users go through it
            "onboardingCompleted": role in ELEVATED_ROLES,
        })
    except DuplicateKeyError:
        raise Conflict("Email already registered")
    logger.info(f"[Auth] User {user['id']} created with role {role}")
    return user


def delete_user(db, actor: dict, user_id: str) -> None:
    users = Gateway(db, "users")
    require_role(actor, (SUPER_ADMIN,))
    if actor["id"] == user_id:
        raise PermissionDenied("You cannot delete your own account")
    users.delete(user_id)
    db["sessions"].delete_many({"userId": user_id})


def bootstrap_admin(db) -> Optional[dict]:
    """Seed the Super Admin named in BOOTSTRAP_ADMIN_EMAIL if it is missing."""
    email = config.BOOTSTRAP_ADMIN_EMAIL
    if not email or not config.BOOTSTRAP_ADMIN_PASSWORD:
        return None
    users = Gateway(db, "users")
    existing = users.find_one({"email": email.lower()})
    if existing:
        if existing.get("role") != SUPER_ADMIN:
            logger.warning(f"[Auth] Bootstrap account {email} exists without the Super Admin role; leaving it unchanged")
        return existing
    logger.info(f"[Auth] Seeding bootstrap Super Admin {email}")
    return create_user(db, None, config.BOOTSTRAP_ADMIN_NAME, email, config.BOOTSTRAP_ADMIN_PASSWORD, role=SUPER_ADMIN)
