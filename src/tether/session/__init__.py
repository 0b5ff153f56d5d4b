"""Session management for concurrent conversations."""

from tether.core.errors import SessionError
from tether.session.manager import Session, SessionManager

__all__ = ["Session", "SessionError", "SessionManager"]
