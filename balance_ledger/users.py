"""
User Directory Module

Lookup of account holders. The balance engine only asks whether a user exists;
creating users is a seeding and administration concern.
"""

from abc import ABC, abstractmethod
from typing import Optional
import re

from .errors import UserNotFound
from .models import User
from .storage import StorageInterface
from .logging_config import get_logger, log_action


EMAIL_PATTERN = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'


class UserDirectory(ABC):
    """Read-only view of users as seen by the balance engine"""

    @abstractmethod
    def get_user(self, user_id: int) -> Optional[User]:
        """Get user by ID"""
        pass

    def exists(self, user_id: int) -> bool:
        return self.get_user(user_id) is not None

    def find(self, user_id: int) -> User:
        """
        Get user by ID

        Raises:
            UserNotFound: If there is no such user
        """
        user = self.get_user(user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user


class StorageUserDirectory(UserDirectory):
    """User directory backed by the users table of the ledger store"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.logger = get_logger("balance_ledger.users")

    def get_user(self, user_id: int) -> Optional[User]:
        return self.storage.load_user(user_id)

    def exists(self, user_id: int) -> bool:
        return self.storage.user_exists(user_id)

    def get_user_by_email(self, email: str) -> Optional[User]:
        """Get user by email address"""
        return self.storage.find_user_by_email(email.strip().lower())

    def create_user(self, name: str, email: str) -> User:
        """
        Create a new user

        Args:
            name: Display name
            email: Email address (unique, stored lower-case)

        Returns:
            Created User object

        Raises:
            ValueError: If the name is empty, the email is malformed or already taken
        """
        name = (name or "").strip()
        email = (email or "").strip().lower()

        if not name:
            raise ValueError("User name is required")
        if not re.match(EMAIL_PATTERN, email):
            raise ValueError("Invalid email format")

        user = self.storage.insert_user(name, email)

        log_action(
            self.logger, "info", "User created",
            user_id=user.id, action="create_user", resource=f"user:{user.id}",
            extra={"email": email}
        )
        return user
