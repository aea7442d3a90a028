"""
Module: billing_kernel.selectors.base
Responsibility: Base class for read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/ and models/.

Selectors accept a Session from the caller, never add, flush or commit, and
return frozen DTOs rather than ORM instances.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """Read-only query surface bound to a caller-owned session."""

    def __init__(self, session: Session):
        self.session = session
