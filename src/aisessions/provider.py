"""Abstract base class for session providers."""

from abc import ABC, abstractmethod
from pathlib import Path

from .config import get_home
from .core import SessionDetail, SessionListItem, Source


class SessionProvider(ABC):
    """Base class for AI coding tool session backends.

    A provider locates one tool's session files (``list_sessions``,
    ``find_session_file``) and parses them into the canonical model
    (``get_session_detail``). None of these methods raise for missing or
    unreadable data: absence is an empty list or None.
    """

    source: Source

    def __init__(self, home: Path | None = None):
        self.home = home if home is not None else get_home()

    @property
    def name(self) -> str:
        return self.source.value

    @abstractmethod
    def get_base_path(self) -> Path:
        """Return the root directory where this tool stores session data."""
        ...

    def is_available(self) -> bool:
        """Return True if this tool's data exists on this machine."""
        return self.get_base_path().is_dir()

    @abstractmethod
    def list_sessions(self, project_path: str | None = None) -> list[SessionListItem]:
        """Return session listings, optionally restricted to one project."""
        ...

    @abstractmethod
    def find_session_file(self, session_id: str) -> Path | None:
        """Return the file (or directory) holding ``session_id``, if any."""
        ...

    @abstractmethod
    def get_session_detail(self, session_id: str) -> SessionDetail | None:
        """Parse a session into messages and metadata."""
        ...
