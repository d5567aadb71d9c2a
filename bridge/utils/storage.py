"""
Storage collaborators for experience records and their embeddings.

The engine only reads records and embeddings and writes embeddings back on
demand; capture, validation and record persistence belong to the caller.
"""

import json
import os
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

from ..models.core import EmbeddingRecord, Experience
from .logging_config import get_logger

logger = get_logger(__name__)


class StorageError(Exception):
    """Custom exception for storage errors."""
    pass


class ExperienceStorage(Protocol):
    """Minimal storage contract consumed by the engine."""

    def list_all_records(self) -> List[Experience]:
        ...

    def list_all_embeddings(self) -> List[EmbeddingRecord]:
        ...

    def save_embeddings(self, records: Iterable[EmbeddingRecord]) -> None:
        ...


class InMemoryStorage:
    """Process-local storage, mainly for tests and embedding into other hosts."""

    def __init__(self, records: Optional[Iterable[Experience]] = None, embeddings: Optional[Iterable[EmbeddingRecord]] = None):
        self._records: Dict[str, Experience] = {record.id: record for record in records or []}
        self._embeddings: Dict[str, EmbeddingRecord] = {record.source_id: record for record in embeddings or []}

    def add_record(self, record: Experience) -> None:
        self._records[record.id] = record

    def delete_record(self, record_id: str) -> None:
        self._records.pop(record_id, None)

    def list_all_records(self) -> List[Experience]:
        return list(self._records.values())

    def list_all_embeddings(self) -> List[EmbeddingRecord]:
        return list(self._embeddings.values())

    def save_embeddings(self, records: Iterable[EmbeddingRecord]) -> None:
        self._embeddings = {record.source_id: record for record in records}


class JsonFileStorage:
    """Flat JSON file holding `{"sources": [...], "embeddings": [...]}`."""

    def __init__(self, path: str):
        """
        Initialize JSON file storage.

        Args:
            path: Location of the data file; created on first write
        """
        self.path = Path(path)
        self._lock = threading.Lock()
        logger.info(f'Initialized JSON storage at: {self.path}')

    def _read(self) -> Dict[str, list]:
        if not self.path.exists():
            return {'sources': [], 'embeddings': []}
        try:
            with self.path.open('r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f'Error reading storage file {self.path}: {e}')
            raise StorageError(f'Failed to read storage file: {e}')
        if not isinstance(data, dict):
            raise StorageError(f'Unexpected storage layout in {self.path}')
        return data

    def _write(self, data: Dict[str, list]) -> None:
        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open('w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            logger.error(f'Error writing storage file {self.path}: {e}')
            raise StorageError(f'Failed to write storage file: {e}')

    def list_all_records(self) -> List[Experience]:
        records = []
        for doc in self._read().get('sources', []):
            try:
                records.append(Experience.from_dict(doc))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f'Skipping malformed record {doc.get("id") if isinstance(doc, dict) else doc}: {e}')
        return records

    def list_all_embeddings(self) -> List[EmbeddingRecord]:
        embeddings = []
        for doc in self._read().get('embeddings', []) or []:
            try:
                embeddings.append(EmbeddingRecord.from_dict(doc))
            except (TypeError, ValueError) as e:
                logger.warning(f'Skipping malformed embedding: {e}')
        return embeddings

    def save_records(self, records: Iterable[Experience]) -> None:
        with self._lock:
            data = self._read()
            data['sources'] = [record.to_dict() for record in records]
            self._write(data)

    def save_embeddings(self, records: Iterable[EmbeddingRecord]) -> None:
        with self._lock:
            data = self._read()
            data['embeddings'] = [record.to_dict() for record in records]
            self._write(data)
            logger.debug(f'Saved {len(data["embeddings"])} embeddings to {self.path}')
