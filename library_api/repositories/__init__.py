"""Repositories: SQL access for each entity.

Every function takes an open ``sqlite3.Connection`` as its first argument.
Repositories never commit; the caller owns the transaction (see
``library_api.database.transaction``). Every read path filters on
``is_active`` explicitly where active scope applies.
"""

import sqlite3
from typing import Iterable, Tuple

from ..errors import BusinessRuleError, LibraryError


def translate_integrity_error(exc: sqlite3.IntegrityError,
                              rules: Iterable[Tuple[str, LibraryError]] = ()) -> LibraryError:
    """Map a constraint failure to a typed error.

    ``rules`` pairs a fragment of the SQLite message (a column, index or
    trigger text) with the error to raise when it matches.
    """
    message = str(exc)
    for needle, error in rules:
        if needle in message:
            return error
    if "FOREIGN KEY" in message:
        return BusinessRuleError("Referenced record does not exist.")
    return BusinessRuleError(f"Database constraint violated: {message}")
