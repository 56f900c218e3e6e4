"""
User model for REST server authentication.

Users live in a collection of the ``db`` datasource (memory connector). Local
users carry a werkzeug password hash; users created by an OAuth provider
callback carry the provider name and the provider's user id instead.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from flask_login import UserMixin
from werkzeug.security import check_password_hash, generate_password_hash

from composer_rest_server.errors import ResourceExistsError

logger = logging.getLogger(__name__)

USER_COLLECTION = 'user'


@dataclass
class User(UserMixin):
    id: str
    username: str
    password_hash: Optional[str] = None
    provider: str = 'local'
    external_id: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None
    profile: Dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def check_password(self, password: str) -> bool:
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'username': self.username,
            'provider': self.provider,
            'displayName': self.display_name,
            'email': self.email,
            'created': self.created_at
        }


class UserStore:
    """Users and provider identities kept in a memory connector collection."""

    def __init__(self, connector):
        self._users: Dict[str, User] = connector.collection(USER_COLLECTION)

    def get(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    def find_by_username(self, username: str) -> Optional[User]:
        for user in self._users.values():
            if user.provider == 'local' and user.username == username:
                return user
        return None

    def create_local_user(self, username: str, password: str, email: Optional[str] = None) -> User:
        if self.find_by_username(username):
            raise ResourceExistsError(USER_COLLECTION, username)

        user = User(
            id=uuid.uuid4().hex,
            username=username,
            password_hash=generate_password_hash(password),
            email=email
        )
        self._users[user.id] = user
        logger.info(f"Created local user {username}")
        return user

    def authenticate(self, username: str, password: str) -> Optional[User]:
        user = self.find_by_username(username)
        if user is None or not user.check_password(password):
            return None
        return user

    def find_or_create_identity(self, provider: str, profile: Dict[str, Any]) -> User:
        """
        Return the user linked to a provider profile, creating it on first login.

        Args:
            provider: provider key from the provider configuration
            profile: user profile returned by the provider (``id`` or ``sub``
                identifies the user)
        """
        external_id = str(profile.get('id') or profile.get('sub'))
        for user in self._users.values():
            if user.provider == provider and user.external_id == external_id:
                user.profile = profile
                return user

        username = profile.get('login') or profile.get('preferred_username') or profile.get('email') or external_id
        user = User(
            id=uuid.uuid4().hex,
            username=f"{provider}.{username}",
            provider=provider,
            external_id=external_id,
            display_name=profile.get('name'),
            email=profile.get('email'),
            profile=profile
        )
        self._users[user.id] = user
        logger.info(f"Linked new {provider} identity {external_id} to user {user.id}")
        return user

    def __len__(self) -> int:
        return len(self._users)
