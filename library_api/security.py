from werkzeug.security import check_password_hash, generate_password_hash

from .config import settings


def _method() -> str:
    return f"scrypt:{settings.password_hash_n}:{settings.password_hash_r}:{settings.password_hash_p}"


def hash_password(password: str) -> str:
    """Hash ``password`` with scrypt.

    The returned string carries the method, cost parameters and a random salt,
    so it is all that needs to be stored.
    """
    if not password:
        raise ValueError("Password cannot be empty.")
    return generate_password_hash(password, method=_method())


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    return check_password_hash(password_hash, password)
