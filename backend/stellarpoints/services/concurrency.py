# Overview: Transaction boundary and retry handling for ledger writes.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import Conflict
from ..extensions import db


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    Optimistic locking (version_id_col) still catches conflicts there.
    """
    return query.with_for_update()


def run_atomic(func, *, attempts: int | None = None, backoff_base: float | None = None):
    """
    Run func() and commit as one database transaction.

    On OperationalError (deadlocks, locks) or StaleDataError (optimistic
    locking conflicts) the session is rolled back and func is re-run from
    scratch, with exponential backoff. Once the attempts are used up the
    caller gets Conflict, which is safe to retry.

    Any other exception rolls back and propagates unchanged, so a failed
    operation never leaves a partial write behind.
    """
    if attempts is None:
        attempts = current_app.config.get("LEDGER_RETRY_ATTEMPTS", 3)
    if backoff_base is None:
        backoff_base = current_app.config.get("LEDGER_RETRY_BACKOFF", 0.05)

    for attempt in range(attempts):
        try:
            result = func()
            db.session.commit()
            return result
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            current_app.logger.warning(
                "Concurrent update conflict (attempt %s/%s): %s", attempt + 1, attempts, exc
            )
            if attempt >= attempts - 1:
                raise Conflict() from exc
            time.sleep(backoff_base * (2 ** attempt))
        except Exception:
            db.session.rollback()
            raise
    raise Conflict()
