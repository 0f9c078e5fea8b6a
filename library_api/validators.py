import re
from typing import Optional

from .errors import BusinessRuleError

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ISBNValidator:
    """ISBN normalization for uniqueness checks.

    ISBNs are compared after removing hyphens and spaces; checksums are not
    enforced since catalog data often carries legacy or internal numbers.
    """

    MAX_LENGTH = 13

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        s = re.sub(r"[^0-9Xx]", "", raw)
        return s.upper()

    @staticmethod
    def is_valid_isbn(isbn: Optional[str]) -> bool:
        s = ISBNValidator.normalize_isbn(isbn)
        if not s or len(s) > ISBNValidator.MAX_LENGTH:
            return False
        # 'X' is only meaningful as a trailing check digit
        if s.endswith("X"):
            return s[:-1].isdigit()
        return s.isdigit()


class TextValidator:
    @staticmethod
    def clean(text: Optional[str]) -> Optional[str]:
        """Strip surrounding whitespace; blank strings become None."""
        if text is None:
            return None
        t = text.strip()
        return t or None

    @staticmethod
    def require(text: Optional[str], field_name: str) -> str:
        cleaned = TextValidator.clean(text)
        if cleaned is None:
            raise BusinessRuleError(f"{field_name} cannot be empty.")
        return cleaned


class EmailValidator:
    @staticmethod
    def normalize_email(raw: Optional[str]) -> str:
        return (raw or "").strip()

    @staticmethod
    def is_valid_email(raw: Optional[str]) -> bool:
        return bool(_EMAIL_RE.match(EmailValidator.normalize_email(raw)))


class PhoneValidator:
    @staticmethod
    def normalize_phone(raw: Optional[str]) -> Optional[str]:
        """Collapse inner whitespace; an empty phone is treated as absent."""
        if raw is None:
            return None
        s = re.sub(r"\s+", "", raw)
        return s or None
