"""
BaseService -- abstract base for kernel and recurring-engine services.

Responsibility:
    Common constructor and session contract.  Concrete services receive a
    SQLAlchemy ``Session`` and persist through ``session.flush()``; the
    caller owns ``commit()`` and ``rollback()``.

Failure modes:
    - A subclass that commits on its own breaks the savepoint isolation of
      the run executor: a FAILED run could be recorded next to a partially
      written invoice.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for session-bound services.

    Guarantees:
        - The service never calls ``session.commit()``.
        - ``session`` is exposed for collaborators that must share the
          caller's transaction.
    """

    def __init__(self, session: Session):
        self._session = session

    @property
    def session(self) -> Session:
        return self._session
