import logging
from typing import List, Optional

from .. import database
from ..errors import BusinessRuleError, ConflictError, DuplicateKeyError, NotFoundError
from ..models import Member, MembershipStatus, utcnow
from ..repositories import members, users
from ..validators import PhoneValidator, TextValidator

logger = logging.getLogger(__name__)


class MemberService:
    """Library members. Each active user owns at most one active member record."""

    def __init__(self, db_file: Optional[str] = None) -> None:
        self.db_file = db_file

    # ------------------------- Queries ------------------------- #
    def list_all(self) -> List[Member]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return members.list_all(conn)

    def list_active(self) -> List[Member]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return members.list_active(conn)

    def list_with_user_info(self) -> List[Member]:
        """Active members, each carrying its user's username and email."""
        with database.transaction(self.db_file, readonly=True) as conn:
            return members.list_with_user_info(conn)

    def list_with_active_loans(self) -> List[Member]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return members.list_with_active_loans(conn)

    def get_member(self, member_id: int) -> Optional[Member]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return members.get_by_id(conn, member_id)

    def find_by_user_id(self, user_id: int) -> Optional[Member]:
        with database.transaction(self.db_file, readonly=True) as conn:
            return members.find_by_user_id(conn, user_id)

    def is_phone_unique(self, phone: str, exclude_id: Optional[int] = None) -> bool:
        normalized = PhoneValidator.normalize_phone(phone)
        if normalized is None:
            return True
        with database.transaction(self.db_file, readonly=True) as conn:
            return members.is_phone_unique(conn, normalized, exclude_id)

    def active_loan_count(self, member_id: int) -> int:
        with database.transaction(self.db_file, readonly=True) as conn:
            if members.get_by_id(conn, member_id) is None:
                raise NotFoundError(f"Member with ID {member_id} not found.")
            return members.active_loan_count(conn, member_id)

    # ------------------------- Commands ------------------------- #
    def create_member(self, member: Member) -> Member:
        self._normalize(member)
        member.member_number = TextValidator.clean(member.member_number)
        now = utcnow()
        member.membership_date = member.membership_date or now
        member.membership_status = MembershipStatus.ACTIVE
        member.is_active = True
        member.created_at = now
        member.updated_at = now
        with database.transaction(self.db_file) as conn:
            user = users.get_by_id(conn, member.user_id)
            if user is None or not user.is_active:
                raise BusinessRuleError(f"User with ID {member.user_id} does not exist.")
            if members.find_by_user_id(conn, member.user_id) is not None:
                raise DuplicateKeyError(f"User with ID {member.user_id} already has a member record.")
            if member.phone and not members.is_phone_unique(conn, member.phone):
                raise DuplicateKeyError(f"Member with phone number '{member.phone}' already exists.")
            if member.member_number is None:
                member.member_number = members.next_member_number(conn)
            elif members.is_member_number_taken(conn, member.member_number):
                raise DuplicateKeyError(f"Member number '{member.member_number}' already exists.")
            member_id = members.insert(conn, member)
            created = members.get_by_id(conn, member_id)
        logger.info("Member %s created (%s)", member_id, created.member_number)
        return created

    def update_member(self, member: Member) -> Member:
        self._normalize(member)
        with database.transaction(self.db_file) as conn:
            existing = members.get_by_id(conn, member.id)
            if existing is None:
                raise NotFoundError(f"Member with ID {member.id} not found.")
            if member.phone and not members.is_phone_unique(conn, member.phone, exclude_id=member.id):
                raise DuplicateKeyError(f"Member with phone number '{member.phone}' already exists.")
            existing.first_name = member.first_name
            existing.last_name = member.last_name
            existing.phone = member.phone
            existing.address = member.address
            existing.date_of_birth = member.date_of_birth
            existing.membership_status = member.membership_status
            existing.membership_expiry_date = member.membership_expiry_date
            existing.updated_at = utcnow()
            members.update(conn, existing)
            updated = members.get_by_id(conn, member.id)
        logger.info("Member %s updated", member.id)
        return updated

    def delete_member(self, member_id: int) -> None:
        """Soft delete; suspends the membership. Refused while books are out."""
        with database.transaction(self.db_file) as conn:
            if members.get_by_id(conn, member_id) is None:
                raise NotFoundError(f"Member with ID {member_id} not found.")
            active = members.active_loan_count(conn, member_id)
            if active > 0:
                logger.warning("Refusing to delete member %s with %s active loan(s)", member_id, active)
                raise ConflictError(f"Cannot delete member with ID {member_id}. It has {active} active loan(s).")
            members.deactivate(conn, member_id, utcnow())
        logger.info("Member %s deactivated", member_id)

    @staticmethod
    def _normalize(member: Member) -> None:
        member.first_name = TextValidator.require(member.first_name, "First name")
        member.last_name = TextValidator.require(member.last_name, "Last name")
        member.phone = PhoneValidator.normalize_phone(member.phone)
        member.address = TextValidator.clean(member.address)
