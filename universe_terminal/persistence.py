# universe_terminal/persistence.py
#
# File-backed stores for sessions and learning progress. Both write plain
# JSON through config_handler so the files stay hand-editable.

import os
import logging
from typing import List, Optional, Protocol

from universe_terminal import config_handler
from universe_terminal.learning_tracker import ProgressionState
from universe_terminal.models import Session

logger = logging.getLogger(__name__)

SESSION_FILE_SUFFIX = ".session.json"


class SessionStore(Protocol):
    def restore_all(self) -> List[Session]: ...

    def save(self, session: Session) -> None: ...

    def delete(self, session_id: str) -> None: ...


class JsonSessionStore:
    """One JSON file per session inside `directory`."""

    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(self.directory, exist_ok=True)

    def _path_for(self, session_id: str) -> str:
        # Ids are uuid4 strings; basename() guards against a crafted id escaping the directory.
        return os.path.join(self.directory, os.path.basename(session_id) + SESSION_FILE_SUFFIX)

    def restore_all(self) -> List[Session]:
        sessions = []
        try:
            filenames = sorted(os.listdir(self.directory))
        except OSError as e:
            logger.error(f"Could not list session directory {self.directory}: {e}", exc_info=True)
            return []

        for filename in filenames:
            if not filename.endswith(SESSION_FILE_SUFFIX):
                continue
            path = os.path.join(self.directory, filename)
            data = config_handler.load_jsonc_file(path)
            if data is None:
                continue
            try:
                sessions.append(Session.from_dict(data))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping unreadable session file {path}: {e}")

        sessions.sort(key=lambda s: s.created_at)
        logger.info(f"Restored {len(sessions)} session(s) from {self.directory}")
        return sessions

    def save(self, session: Session) -> None:
        if not config_handler.save_json_file(self._path_for(session.id), session.to_dict()):
            logger.error(f"Failed to persist session {session.id}")

    def delete(self, session_id: str) -> None:
        path = self._path_for(session_id)
        try:
            os.remove(path)
            logger.debug(f"Deleted session file {path}")
        except FileNotFoundError:
            logger.debug(f"No session file to delete for {session_id}")
        except OSError as e:
            logger.error(f"Could not delete session file {path}: {e}", exc_info=True)


class JsonProgressStore:
    """Learning progress in a single JSON file."""

    def __init__(self, path: str):
        self.path = path

    def load(self) -> Optional[ProgressionState]:
        data = config_handler.load_jsonc_file(self.path)
        if data is None:
            return None
        try:
            return ProgressionState.from_dict(data)
        except (TypeError, ValueError) as e:
            logger.warning(f"Ignoring unreadable progress file {self.path}: {e}")
            return None

    def save(self, state: ProgressionState) -> None:
        if not config_handler.save_json_file(self.path, state.to_dict()):
            logger.error(f"Failed to persist learning progress to {self.path}")
