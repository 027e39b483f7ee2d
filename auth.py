import logging
import os
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, Header
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database
from pymongo.errors import PyMongoError

from database import get_db, serialize_doc, to_object_id
from errors import AuthenticationError, InvalidInputError, PermissionDeniedError, StorefrontError
from schemas import Role, User as UserSchema

logger = logging.getLogger(__name__)

# JWT Config
SECRET_KEY = os.getenv("JWT_SECRET", "dev-secret-change")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24 * 7  # 7 days

MIN_PASSWORD_LENGTH = 8
MIN_PASSWORD_STRENGTH = 3

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "jti": uuid.uuid4().hex})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise AuthenticationError("Invalid or expired token")


def password_strength(password: str) -> int:
    """Score 0-4: length >= 8, an uppercase letter, a digit, a symbol."""
    score = 0
    if len(password) >= MIN_PASSWORD_LENGTH:
        score += 1
    if re.search(r"[A-Z]", password):
        score += 1
    if re.search(r"[0-9]", password):
        score += 1
    if re.search(r"[^A-Za-z0-9]", password):
        score += 1
    return score


def validate_new_password(password: str, confirm_password: Optional[str] = None) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InvalidInputError("Password must be at least 8 characters")
    if password_strength(password) < MIN_PASSWORD_STRENGTH:
        raise InvalidInputError("Password too weak; include uppercase, numbers & symbols")
    if confirm_password is not None and password != confirm_password:
        raise InvalidInputError("Passwords do not match")


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    user = serialize_doc(user)
    # Never send password hash
    user.pop("password_hash", None)
    return user


def sign_up(db: Database, full_name: str, email: str, password: str, confirm_password: str) -> Dict[str, Any]:
    if not full_name.strip():
        raise InvalidInputError("Please enter your full name")
    validate_new_password(password, confirm_password)
    email = email.lower()
    if db["users"].find_one({"email": email}):
        raise InvalidInputError("Email already registered")
    user_model = UserSchema(
        full_name=full_name.strip(),
        email=email,
        password_hash=hash_password(password),
    )
    doc = user_model.model_dump()
    doc["created_at"] = datetime.now(timezone.utc)
    try:
        result = db["users"].insert_one(doc)
    except PyMongoError as e:
        logger.error("Sign up failed: %s", e)
        raise StorefrontError("Failed to create account", status_code=500)
    logger.info("Registered user %s", result.inserted_id)
    return public_user(db["users"].find_one({"_id": result.inserted_id}))


def sign_in_with_password(db: Database, email: str, password: str) -> Dict[str, Any]:
    user = db["users"].find_one({"email": email.lower()})
    if not user or not verify_password(password, user.get("password_hash", "")):
        raise AuthenticationError("Invalid email or password")
    token = create_access_token({"sub": str(user["_id"])})
    return {"access_token": token, "token_type": "bearer", "user": public_user(user)}


def sign_out(db: Database, token: str) -> None:
    payload = decode_token(token)
    try:
        db["revoked_tokens"].update_one(
            {"jti": payload.get("jti")},
            {"$set": {"jti": payload.get("jti"), "revoked_at": datetime.now(timezone.utc)}},
            upsert=True,
        )
    except PyMongoError as e:
        logger.error("Sign out failed: %s", e)
        raise StorefrontError("Failed to sign out", status_code=500)


def update_user(
    db: Database,
    user_id: str,
    full_name: Optional[str] = None,
    phone_number: Optional[str] = None,
    address: Optional[str] = None,
    place_formatted_address: Optional[str] = None,
    password: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Save account settings. An address must be the formatted address of the
    place picked from autocomplete; a free-typed address is rejected.
    """
    if address is not None and (not address.strip() or address != place_formatted_address):
        raise InvalidInputError("Please select a valid address.")
    updates: Dict[str, Any] = {}
    if full_name is not None:
        if not full_name.strip():
            raise InvalidInputError("Please enter your full name")
        updates["full_name"] = full_name.strip()
    if phone_number is not None:
        updates["phone_number"] = phone_number
    if address is not None:
        updates["address"] = address
    if password:
        validate_new_password(password)
        updates["password_hash"] = hash_password(password)
    if updates:
        try:
            db["users"].update_one({"_id": to_object_id(user_id)}, {"$set": updates})
        except PyMongoError as e:
            logger.error("Account update failed for user %s: %s", user_id, e)
            raise StorefrontError("Failed to save account", status_code=500)
    return public_user(db["users"].find_one({"_id": to_object_id(user_id)}))


def bearer_token(authorization: Optional[str] = Header(default=None)) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise AuthenticationError("Not authenticated")
    return authorization.split(" ", 1)[1]


# Dependency to get current user

def get_current_user(token: str = Depends(bearer_token), db: Database = Depends(get_db)):
    payload = decode_token(token)
    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token")
    if db["revoked_tokens"].find_one({"jti": payload.get("jti")}):
        raise AuthenticationError("Session has ended, please sign in again")
    user = db["users"].find_one({"_id": to_object_id(user_id)})
    if not user:
        raise AuthenticationError("User not found")
    return public_user(user)


def require_admin(current_user: dict = Depends(get_current_user)):
    if current_user.get("role") != Role.admin.value:
        raise PermissionDeniedError("Admins only")
    return current_user
