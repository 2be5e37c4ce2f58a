from .cleanup import SessionSweeper
from .manager import SessionManager
from .metadata import SessionMetadataCache

__all__ = ["SessionManager", "SessionMetadataCache", "SessionSweeper"]
