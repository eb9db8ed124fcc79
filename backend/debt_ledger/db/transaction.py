from contextlib import contextmanager

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from debt_ledger.core.errors import ConcurrentModification


@contextmanager
def atomic(s: Session):
    """Commit everything done inside the block, or nothing.

    A version mismatch on flush means another request changed a loan after we
    read it; that is reported as ``ConcurrentModification``.
    """
    try:
        yield s
        s.commit()
    except StaleDataError as e:
        s.rollback()
        raise ConcurrentModification("loan was modified by another request, reload and retry") from e
    except Exception:
        s.rollback()
        raise
