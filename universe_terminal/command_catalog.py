# universe_terminal/command_catalog.py
#
# Lookup of known commands (name, description, flags, example) used by the
# advisory engine. Entries come from the bundled default catalog, with user
# entries of the same name taking precedence.

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

from universe_terminal import config_handler
from universe_terminal.models import CatalogEntry, CommandFlag

logger = logging.getLogger(__name__)

DEFAULT_CATALOG_FILENAME = "default_command_catalog.json"
USER_CATALOG_FILENAME = "user_command_catalog.json"


class CommandCatalog(Protocol):
    def get_all(self) -> Sequence[CatalogEntry]: ...

    def search(self, prefix: str) -> Sequence[CatalogEntry]: ...

    def get(self, name: str) -> Optional[CatalogEntry]: ...


def entry_from_dict(data: Dict[str, Any]) -> CatalogEntry:
    flags = tuple(
        CommandFlag(flag=f["flag"], description=f.get("description", ""), example=f.get("example"))
        for f in data.get("flags", [])
    )
    return CatalogEntry(
        name=data["name"],
        description=data.get("description", ""),
        flags=flags,
        example=data.get("example", ""),
        category=data.get("category", "miscellaneous"),
    )


class InMemoryCommandCatalog:
    """Catalog over an ordered list of entries. Order is significant for ranking ties."""

    def __init__(self, entries: Sequence[CatalogEntry] = ()):
        self._entries: List[CatalogEntry] = []
        self._by_name: Dict[str, CatalogEntry] = {}
        for entry in entries:
            self._add(entry)

    def _add(self, entry: CatalogEntry) -> None:
        if entry.name in self._by_name:
            # Replace in place so the original catalog position is kept.
            index = next(i for i, e in enumerate(self._entries) if e.name == entry.name)
            self._entries[index] = entry
        else:
            self._entries.append(entry)
        self._by_name[entry.name] = entry

    def get_all(self) -> Sequence[CatalogEntry]:
        return tuple(self._entries)

    def search(self, prefix: str) -> Sequence[CatalogEntry]:
        prefix = prefix.lower()
        return tuple(e for e in self._entries if e.name.lower().startswith(prefix))

    def get(self, name: str) -> Optional[CatalogEntry]:
        return self._by_name.get(name)


class JsonCommandCatalog(InMemoryCommandCatalog):
    """Catalog loaded from the default catalog file merged with an optional user file."""

    def __init__(self, default_path: str, user_path: Optional[str] = None):
        super().__init__()
        self.default_path = default_path
        self.user_path = user_path
        self.reload()

    def _load_entries(self, path: Optional[str]) -> List[CatalogEntry]:
        if not path:
            return []
        data = config_handler.load_jsonc_file(path)
        if data is None:
            return []
        entries = []
        for raw in data.get("commands", []):
            try:
                entries.append(entry_from_dict(raw))
            except (KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed catalog entry in {path}: {raw!r} ({e})")
        return entries

    def reload(self) -> None:
        self._entries = []
        self._by_name = {}
        default_entries = self._load_entries(self.default_path)
        user_entries = self._load_entries(self.user_path)
        for entry in default_entries + user_entries:
            self._add(entry)
        logger.info(f"Loaded {len(default_entries)} default and {len(user_entries)} user catalog entries, "
                    f"resulting in {len(self._entries)} total commands.")
