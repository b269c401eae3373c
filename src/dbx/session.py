"""SQLAlchemy session helpers for engines opened by dbx.

This module provides:

* ``DbxSession``       -- A ``Session`` with ``expire_on_commit=False``.
* ``session_factory``  -- A ``sessionmaker`` producing ``DbxSession`` objects.

Tags:
    dbx, orm, sqlalchemy, session

Doc-Types:
    api-reference
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker


class DbxSession(Session):
    """Pre-configured session with ``expire_on_commit=False``.

    Prevents lazy-load surprises after commit.  Closing the session returns
    its connection to the pool; the engine stays open.
    """

    def __init__(self, bind: Engine | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("expire_on_commit", False)
        super().__init__(bind=bind, **kwargs)


def session_factory(engine: Engine) -> sessionmaker[DbxSession]:
    """Return a ``sessionmaker`` bound to *engine* that produces ``DbxSession`` instances."""
    return sessionmaker(bind=engine, class_=DbxSession)


__all__ = ["DbxSession", "session_factory"]
