import pytest

from library_api.errors import BusinessRuleError, ConflictError, DuplicateKeyError, NotFoundError
from library_api.models import Member, User, UserRole
from library_api.security import hash_password, verify_password


def test_password_hash_round_trip():
    digest = hash_password("hunter2")

    assert digest.startswith("scrypt:1024:8:1$")
    assert verify_password("hunter2", digest) is True
    assert verify_password("hunter3", digest) is False
    assert verify_password("", digest) is False
    assert hash_password("hunter2") != digest  # fresh salt each time


def test_empty_password_cannot_be_hashed():
    with pytest.raises(ValueError):
        hash_password("")


def test_create_user_stores_hash_not_password(lib):
    user = lib.users.create_user(User(username="alice", email="alice@example.com"), "s3cret")

    assert user.id is not None
    assert user.role == UserRole.MEMBER
    assert user.password_hash and user.password_hash != "s3cret"
    assert "password_hash" not in user.to_dict()
    assert user.password_hash.startswith("scrypt:")


def test_password_required(lib):
    with pytest.raises(BusinessRuleError, match="Password is required."):
        lib.users.create_user(User(username="bob", email="bob@example.com"), "")


def test_invalid_email_rejected(lib):
    with pytest.raises(BusinessRuleError, match="Invalid email"):
        lib.users.create_user(User(username="bob", email="not-an-email"), "pw")


def test_username_and_email_unique_case_insensitively(lib, make_user):
    make_user(username="Alice", email="alice@example.com")

    with pytest.raises(DuplicateKeyError, match="username"):
        make_user(username="alice", email="other@example.com")
    with pytest.raises(DuplicateKeyError, match="email"):
        make_user(username="alice2", email="ALICE@example.com")
    assert lib.users.is_username_unique("ALICE") is False
    assert lib.users.is_email_unique("Alice@Example.com") is False


def test_non_ascii_usernames_compare_case_insensitively(lib, make_user):
    make_user(username="Ömer", email="omer@example.com")

    with pytest.raises(DuplicateKeyError, match="username"):
        make_user(username="ömer", email="other@example.com")
    assert lib.users.find_by_username("ÖMER").username == "Ömer"
    assert lib.users.is_username_unique("Omer") is True


def test_lookup_by_username_and_email(lib, make_user):
    user = make_user(username="carol", email="carol@example.com")

    assert lib.users.find_by_username("CAROL").id == user.id
    assert lib.users.find_by_email("carol@EXAMPLE.com").id == user.id
    assert lib.users.find_by_username("dave") is None


def test_find_by_role(lib, make_user):
    make_user(username="admin", role=UserRole.ADMIN)
    make_user(username="lib1", role=UserRole.LIBRARIAN)
    make_user(username="lib2", role=UserRole.LIBRARIAN)

    assert [u.username for u in lib.users.find_by_role("librarian")] == ["lib1", "lib2"]
    assert [u.username for u in lib.users.find_by_role("ADMIN")] == ["admin"]
    assert lib.users.find_by_role("janitor") == []


def test_update_keeps_password_unless_given(lib, make_user):
    user = make_user(username="erin", password="first")
    original_hash = lib.users.get_user(user.id).password_hash

    user.email = "erin@new.example.com"
    user.role = UserRole.LIBRARIAN
    updated = lib.users.update_user(user)

    assert updated.email == "erin@new.example.com"
    assert updated.role == UserRole.LIBRARIAN
    assert updated.password_hash == original_hash
    assert lib.users.authenticate("erin", "first") is not None

    lib.users.update_user(updated, password="second")
    assert lib.users.authenticate("erin", "first") is None
    assert lib.users.authenticate("erin", "second") is not None


def test_update_does_not_conflict_with_itself(lib, make_user):
    user = make_user(username="frank")
    user.username = "FRANK"
    assert lib.users.update_user(user).username == "FRANK"


def test_update_missing_user(lib):
    with pytest.raises(NotFoundError):
        lib.users.update_user(User(id=9, username="x", email="x@example.com"))


def test_authenticate_stamps_last_login(lib, make_user):
    user = make_user(username="gina", password="pw")
    assert user.last_login_date is None

    assert lib.users.authenticate("gina", "wrong") is None
    logged_in = lib.users.authenticate("gina", "pw")

    assert logged_in.id == user.id
    assert lib.users.get_user(user.id).last_login_date is not None


def test_soft_delete_user(lib, make_user):
    user = make_user(username="hank")

    lib.users.delete_user(user.id)

    assert lib.users.list_users() == []
    assert lib.users.get_user(user.id).is_active is False
    assert lib.users.authenticate("hank", "secret-pass") is None
    # Inactive rows no longer reserve the username
    assert make_user(username="hank").id != user.id


def test_delete_user_with_borrowing_member_conflicts(lib, make_user, make_book):
    user = make_user()
    member = lib.members.create_member(Member(user_id=user.id, first_name="I", last_name="J"))
    lib.loans.borrow(member.id, make_book().id)

    with pytest.raises(ConflictError):
        lib.users.delete_user(user.id)


def test_sign_up_creates_active_member_user(lib):
    user = lib.users.sign_up("ivy", " ivy@example.com ", "pw")

    assert user.role == UserRole.MEMBER
    assert user.is_active is True
    assert user.email == "ivy@example.com"
    assert lib.users.authenticate("ivy", "pw").id == user.id


def test_sign_up_admin_and_duplicates(lib):
    admin = lib.users.sign_up("root", "root@example.com", "pw", role=UserRole.ADMIN)
    assert admin.role == UserRole.ADMIN

    with pytest.raises(DuplicateKeyError, match="username"):
        lib.users.sign_up("ROOT", "other@example.com", "pw")
    with pytest.raises(DuplicateKeyError, match="email"):
        lib.users.sign_up("other", "root@example.com", "pw")
    with pytest.raises(BusinessRuleError, match="Password is required."):
        lib.users.sign_up("nopass", "nopass@example.com", "")
