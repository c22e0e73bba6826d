import os
import hmac
import base64
import hashlib
import logging
from enum import Enum
from typing import List, Optional
from dataclasses import dataclass

from llmchat.models.schemas import User
from llmchat.services.locks import ResourceLocks

logger = logging.getLogger(__name__)

USERS_COLLECTION = "users"
PBKDF2_ITERATIONS = 200_000


def generate_salt(size: int = 16) -> str:
    return base64.b64encode(os.urandom(size)).decode("ascii")


def hash_password(password: str, salt: str) -> str:
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), PBKDF2_ITERATIONS)
    return base64.b64encode(digest).decode("ascii")


def verify_password(password: str, password_hash: str, salt: str) -> bool:
    return hmac.compare_digest(hash_password(password, salt), password_hash)


class RegistrationError(str, Enum):
    DUPLICATE_USERNAME = "duplicate_username"
    INVALID_INPUT = "invalid_input"


@dataclass
class RegistrationResult:
    user: Optional[User] = None
    error: Optional[RegistrationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class UserStore:
    def __init__(self, store, locks: ResourceLocks):
        self._store = store
        self._locks = locks

    def get_user(self, user_id: str) -> Optional[User]:
        data = self._store.get(USERS_COLLECTION, user_id)
        return User.from_document(data) if data else None

    def get_user_by_username(self, username: str) -> Optional[User]:
        wanted = username.casefold()
        for data in self._store.list(USERS_COLLECTION):
            if data.get("username", "").casefold() == wanted:
                return User.from_document(data)
        return None

    def list_users(self) -> List[User]:
        return [User.from_document(d) for d in self._store.list(USERS_COLLECTION)]

    def create_user(self, user: User) -> User:
        with self._locks.hold(USERS_COLLECTION):
            self._store.put(USERS_COLLECTION, user.to_document())
        return user

    def update_user(self, user: User) -> User:
        with self._locks.hold(USERS_COLLECTION):
            if self._store.get(USERS_COLLECTION, user.id) is not None:
                self._store.put(USERS_COLLECTION, user.to_document())
        return user

    def register(self, username: str, password: str, role: str = "User") -> RegistrationResult:
        username = username.strip()
        if not username or not password:
            return RegistrationResult(error=RegistrationError.INVALID_INPUT)

        # Check and insert under one lock so two registrations cannot both win
        with self._locks.hold(USERS_COLLECTION):
            if self.get_user_by_username(username) is not None:
                return RegistrationResult(error=RegistrationError.DUPLICATE_USERNAME)
            salt = generate_salt()
            user = User(username=username, password_hash=hash_password(password, salt), salt=salt, role=role)
            self.create_user(user)

        logger.info("Registered user %s", user.id)
        return RegistrationResult(user=user)

    def verify_credentials(self, username: str, password: str) -> Optional[User]:
        user = self.get_user_by_username(username)
        if user is None or not verify_password(password, user.password_hash, user.salt):
            return None
        return user
