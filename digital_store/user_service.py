import logging
from datetime import datetime

from sqlalchemy.orm import Session

from digital_store.config import ADMIN_EMAIL
from digital_store.database import transaction
from digital_store.exceptions import Conflict, NotFound, PermissionDenied
from digital_store.models import Role, User
from digital_store.repositories import UserRepository
from digital_store.schemas import (
    ProfileUpdate,
    RegisterUserRequest,
    UserCreate,
    UserFilter,
    UserUpdate,
    UserUpdateResult,
    UserView,
)
from digital_store.security import get_password_hash, verify_password

log = logging.getLogger(__name__)

EMAIL_TAKEN = "This email already exists"
EMAIL_IN_USE = "This email is already used by another user"


class UserService:
    def __init__(self, db: Session, clock=datetime.now):
        self.db = db
        self.clock = clock
        self.users = UserRepository(db)

    def list_users(self):
        return [UserView.model_validate(u) for u in self.users.all()]

    def get_user(self, user_id) -> UserView:
        return UserView.model_validate(self._get(user_id))

    def get_user_by_email(self, email) -> UserView:
        user = self.users.get_by_email(email)
        if user is None:
            raise NotFound("User not found")
        return UserView.model_validate(user)

    def search_users(self, filters: UserFilter = None):
        filters = filters or UserFilter()
        return [UserView.model_validate(u) for u in self.users.find_by_filters(**filters.model_dump())]

    def authenticate(self, email, password):
        user = self.users.get_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            return None
        return user

    def register(self, data: RegisterUserRequest) -> UserView:
        """Self-registration. Everyone is a client except the configured admin email."""
        role = Role.ADMIN if data.email.lower() == ADMIN_EMAIL.lower() else Role.CLIENT
        return self._create(data, role, "A user with this email is already registered")

    def create_user(self, data: UserCreate) -> UserView:
        return self._create(data, data.role, EMAIL_TAKEN)

    def update_user(self, user_id, data: UserUpdate, actor_email) -> UserUpdateResult:
        """Admin edit of any account, role included."""
        with transaction(self.db, EMAIL_TAKEN):
            user = self._get(user_id)
            own_record = user.email == actor_email
            self._change_email(user, data.email, EMAIL_TAKEN)
            user.first_name = data.first_name
            user.last_name = data.last_name
            user.role = data.role
            if data.password:
                user.password_hash = get_password_hash(data.password)
            user.updated_at = self.clock()
        log.info("User %s updated by %s", user_id, actor_email)
        return UserUpdateResult(
            user=UserView.model_validate(user),
            refreshed_identity=user.email if own_record else None,
        )

    def update_profile(self, user_id, data: ProfileUpdate, actor_email) -> UserUpdateResult:
        """Self-edit. The role is left alone.

        The caller's session still names ``actor_email``; the result tells it
        which identity to switch to.
        """
        with transaction(self.db, EMAIL_IN_USE):
            user = self._get(user_id)
            if user.email != actor_email:
                log.warning("%s tried to edit the profile of user %s", actor_email, user_id)
                raise PermissionDenied("You can only edit your own profile")
            self._change_email(user, data.email, EMAIL_IN_USE)
            user.first_name = data.first_name
            user.last_name = data.last_name
            if data.password:
                user.password_hash = get_password_hash(data.password)
            user.updated_at = self.clock()
        log.info("User %s updated own profile", user_id)
        return UserUpdateResult(user=UserView.model_validate(user), refreshed_identity=user.email)

    def delete_user(self, user_id):
        with transaction(self.db):
            self.users.delete(self._get(user_id))
        log.info("User %s deleted", user_id)

    def _create(self, data, role, conflict_message):
        with transaction(self.db, conflict_message):
            if self.users.exists_by_email(data.email):
                raise Conflict(conflict_message)
            now = self.clock()
            user = self.users.add(User(
                email=data.email,
                first_name=data.first_name,
                last_name=data.last_name,
                role=role,
                password_hash=get_password_hash(data.password),
                created_at=now,
                updated_at=now,
            ))
        log.info("User %s created with role %s", user.id, role.value)
        return UserView.model_validate(user)

    def _change_email(self, user, new_email, conflict_message):
        if user.email != new_email and self.users.exists_by_email(new_email):
            raise Conflict(conflict_message)
        user.email = new_email

    def _get(self, user_id):
        user = self.users.get(user_id)
        if user is None:
            raise NotFound("User not found")
        return user
