"""File system-based storage for compositions and performances."""

import re
from pathlib import Path
from typing import Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .composition.models import Composition, Performance
from .logging_config import get_logger

ModelT = TypeVar("ModelT", bound=BaseModel)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class JSONFileStore(Generic[ModelT]):
    """One JSON document per item, named after the item's id."""

    def __init__(self, directory: Path, model: Type[ModelT]):
        """
        Initialize the store.

        Args:
            directory: Directory holding the JSON documents
            model: Pydantic model the documents deserialize to
        """
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self.model = model
        self.logger = get_logger(__name__)

    def _path_for(self, item_id: str) -> Path:
        if not _SAFE_ID.match(item_id):
            raise ValueError(f"Unsafe identifier for file storage: {item_id!r}")
        return self.directory / f"{item_id}.json"

    def load_all(self) -> List[ModelT]:
        """Load every readable document; unreadable ones are logged and skipped."""
        items = []
        for file_path in sorted(self.directory.glob("*.json")):
            try:
                items.append(self.model.model_validate_json(file_path.read_text(encoding="utf-8")))
            except (OSError, ValidationError) as e:
                self.logger.error(f"Failed to load {self.model.__name__} from {file_path}: {e}")
        return items

    def get(self, item_id: str) -> Optional[ModelT]:
        file_path = self._path_for(item_id)
        if not file_path.exists():
            return None
        return self.model.model_validate_json(file_path.read_text(encoding="utf-8"))

    def save(self, item: ModelT) -> Path:
        """Write an item, replacing any previous version with the same id."""
        file_path = self._path_for(item.id)
        file_path.write_text(item.model_dump_json(indent=2), encoding="utf-8")
        self.logger.debug(f"Saved {self.model.__name__} {item.id} to {file_path}")
        return file_path

    def delete(self, item_id: str) -> bool:
        """
        Delete an item.

        Returns:
            True if a document was removed
        """
        file_path = self._path_for(item_id)
        if not file_path.exists():
            return False
        file_path.unlink()
        self.logger.info(f"Deleted {self.model.__name__} {item_id}")
        return True


class FileSystemStorage:
    """Composition and performance stores under one base directory."""

    def __init__(self, base_path: Path):
        """
        Initialize file system storage manager.

        Args:
            base_path: Base directory for stored documents
        """
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

        self.compositions: JSONFileStore[Composition] = JSONFileStore(self.base_path / "compositions", Composition)
        self.performances: JSONFileStore[Performance] = JSONFileStore(self.base_path / "performances", Performance)

    def performances_for(self, composition_id: str) -> List[Performance]:
        """Performances of one composition, oldest first."""
        matching = [p for p in self.performances.load_all() if p.composition_id == composition_id]
        return sorted(matching, key=lambda p: p.start_time)
