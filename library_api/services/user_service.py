import logging
from typing import List, Optional

from .. import database
from ..errors import BusinessRuleError, ConflictError, DuplicateKeyError, NotFoundError
from ..models import User, UserRole, utcnow
from ..repositories import members, users
from ..security import hash_password, verify_password
from ..validators import EmailValidator, TextValidator

logger = logging.getLogger(__name__)


class UserService:
    """User accounts. Username and email are unique, case-insensitively, among active users."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    # ------------------------- Queries ------------------------- #
    def list_users(self) -> List[User]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return users.list_active(conn)

    def get_user(self, user_id: int) -> Optional[User]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return users.get_by_id(conn, user_id)

    def find_by_username(self, username: str) -> Optional[User]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return users.find_by_username(conn, username.strip())

    def find_by_email(self, email: str) -> Optional[User]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return users.find_by_email(conn, EmailValidator.normalize_email(email))

    def find_by_role(self, role: str) -> List[User]:
        """Users with ``role`` (any case); an unknown role yields an empty list."""
        parsed = UserRole.parse(role)
        if parsed is None:
            return []
        with database.transaction(self.db_file, readonly=True) as conn:
            return users.find_by_role(conn, parsed)

    def is_username_unique(self, username: str, exclude_id: Optional[int] = None) -> bool:
        with database.transaction(self.db_file, readonly=True) as conn:
            return users.is_username_unique(conn, username.strip(), exclude_id)

    def is_email_unique(self, email: str, exclude_id: Optional[int] = None) -> bool:
        with database.transaction(self.db_file, readonly=True) as conn:
            return users.is_email_unique(conn, EmailValidator.normalize_email(email), exclude_id)

    # ------------------------- Commands ------------------------- #
    def create_user(self, user: User, password: str) -> User:
        self._normalize(user)
        if not password:
            raise BusinessRuleError("Password is required.")
        user.password_hash = hash_password(password)
        now = utcnow()
        user.created_at = now
        user.updated_at = now
        user.is_active = True
        with database.transaction(self.db_file) as conn:
            self._check_unique(conn, user)
            user_id = users.insert(conn, user)
            created = users.get_by_id(conn, user_id)
        logger.info("User %s created (%s, role %s)", user_id, created.username, created.role.value)
        return created

    def sign_up(self, username: str, email: str, password: str, role: UserRole = UserRole.MEMBER) -> User:
        """Self-service registration; same checks as :meth:`create_user`."""
        user = self.create_user(User(username=username, email=email, role=role), password)
        logger.info("User %s signed up as %s", user.id, user.role.value)
        return user

    def update_user(self, user: User, password: Optional[str] = None) -> User:
        """Replace username, email and role; the password only changes when one is given."""
        self._normalize(user)
        with database.transaction(self.db_file) as conn:
            existing = users.get_by_id(conn, user.id)
            if existing is None:
                raise NotFoundError(f"User with ID {user.id} not found.")
            self._check_unique(conn, user, exclude_id=user.id)
            existing.username = user.username
            existing.email = user.email
            existing.role = user.role
            existing.updated_at = utcnow()
            if password:
                existing.password_hash = hash_password(password)
            users.update(conn, existing)
            updated = users.get_by_id(conn, user.id)
        return updated

    def delete_user(self, user_id: int) -> None:
        """Soft delete; refused while the user's member record has books out."""
        with database.transaction(self.db_file) as conn:
            if users.get_by_id(conn, user_id) is None:
                raise NotFoundError(f"User with ID {user_id} not found.")
            member = members.find_by_user_id(conn, user_id)
            if member is not None:
                active = members.active_loan_count(conn, member.id)
                if active > 0:
                    logger.warning("Refusing to delete user %s: member %s has %s active loan(s)",
                                   user_id, member.id, active)
                    raise ConflictError(
                        f"Cannot delete user with ID {user_id}. "
                        f"Associated member has {active} active loan(s)."
                    )
            users.set_active(conn, user_id, False, utcnow())
        logger.info("User %s deactivated", user_id)

    def authenticate(self, username: str, password: str) -> Optional[User]:
        """Return the active user if the password matches, stamping the login time."""
        with database.transaction(self.db_file) as conn:
            user = users.find_by_username(conn, username.strip())
            if user is None or not verify_password(password, user.password_hash):
                logger.warning("Failed login for %r", username)
                return None
            user.last_login_date = utcnow()
            users.set_last_login(conn, user.id, user.last_login_date)
        return user

    # ------------------------- Utilities ------------------------- #
    @staticmethod
    def _normalize(user: User) -> None:
        user.username = TextValidator.require(user.username, "Username")
        user.email = EmailValidator.normalize_email(user.email)
        if not EmailValidator.is_valid_email(user.email):
            raise BusinessRuleError(f"Invalid email address: {user.email!r}.")

    @staticmethod
    def _check_unique(conn, user: User, exclude_id: Optional[int] = None) -> None:
        if not users.is_username_unique(conn, user.username, exclude_id):
            raise DuplicateKeyError(f"User with username '{user.username}' already exists.")
        if not users.is_email_unique(conn, user.email, exclude_id):
            raise DuplicateKeyError(f"User with email '{user.email}' already exists.")
