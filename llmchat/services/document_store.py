"""
Generic keyed persistence of JSON-like records.

Records are plain dicts grouped in named collections. A collection name may
contain "/" to nest ("conversations/<id>/messages"). Both backends keep
insertion order, upsert by the configured identity field and never leave a
half-written collection behind.
"""
import os
import re
import json
import logging
import tempfile
from typing import Optional, List, Dict, Any

from sqlalchemy.exc import SQLAlchemyError

from llmchat.errors import StorageError
from llmchat.models import db_models

logger = logging.getLogger(__name__)

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


def validate_collection(collection: str) -> str:
    segments = collection.split("/")
    for segment in segments:
        if not _SEGMENT_RE.fullmatch(segment) or segment in (".", ".."):
            raise ValueError(f"Invalid collection name: {collection!r}")
    return collection


class SqlDocumentStore:
    """Document store on one SQLAlchemy table; each call is a single transaction."""

    def __init__(self, session_factory, id_field: str = "id"):
        self._session_factory = session_factory
        self.id_field = id_field

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        try:
            with self._session_factory() as db:
                row = db.query(db_models.DocumentDB).filter(
                    db_models.DocumentDB.collection == collection,
                    db_models.DocumentDB.doc_id == doc_id,
                ).first()
                return dict(row.data) if row else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to read {collection}/{doc_id}: {e}") from e

    def list(self, collection: str) -> List[Dict[str, Any]]:
        try:
            with self._session_factory() as db:
                rows = db.query(db_models.DocumentDB).filter(
                    db_models.DocumentDB.collection == collection
                ).order_by(db_models.DocumentDB.seq.asc()).all()
                return [dict(row.data) for row in rows]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list {collection}: {e}") from e

    def put(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        doc_id = record[self.id_field]
        try:
            with self._session_factory() as db:
                row = db.query(db_models.DocumentDB).filter(
                    db_models.DocumentDB.collection == collection,
                    db_models.DocumentDB.doc_id == doc_id,
                ).first()
                if row:
                    # Reassign rather than mutate so the JSON change is detected
                    row.data = dict(record)
                else:
                    db.add(db_models.DocumentDB(collection=collection, doc_id=doc_id, data=dict(record)))
                db.commit()
            return record
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to write {collection}/{doc_id}: {e}") from e

    def remove(self, collection: str, doc_id: str) -> bool:
        try:
            with self._session_factory() as db:
                deleted = db.query(db_models.DocumentDB).filter(
                    db_models.DocumentDB.collection == collection,
                    db_models.DocumentDB.doc_id == doc_id,
                ).delete()
                db.commit()
                return deleted > 0
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to remove {collection}/{doc_id}: {e}") from e

    def drop(self, collection: str):
        try:
            with self._session_factory() as db:
                db.query(db_models.DocumentDB).filter(
                    db_models.DocumentDB.collection == collection
                ).delete()
                db.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to drop {collection}: {e}") from e


class JsonFileDocumentStore:
    """
    Document store with one indented JSON list per collection under ``root``.

    Every write goes to a temporary file in the target directory and is then
    moved over the old file with ``os.replace``, so readers see either the
    previous or the new list, never a truncated one.
    """

    def __init__(self, root: str, id_field: str = "id"):
        self.root = os.path.abspath(root)
        self.id_field = id_field

    def _path(self, collection: str) -> str:
        validate_collection(collection)
        return os.path.join(self.root, *collection.split("/")) + ".json"

    def _read(self, collection: str) -> List[Dict[str, Any]]:
        path = self._path(collection)
        if not os.path.exists(path):
            return []
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read {path}: {e}") from e
        if not isinstance(data, list):
            raise StorageError(f"{path} does not contain a JSON list")
        return data

    def _write(self, collection: str, records: List[Dict[str, Any]]):
        path = self._path(collection)
        directory = os.path.dirname(path)
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=".tmp-", suffix=".json", dir=directory)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
            tmp_path = None
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        for record in self._read(collection):
            if record.get(self.id_field) == doc_id:
                return record
        return None

    def list(self, collection: str) -> List[Dict[str, Any]]:
        return self._read(collection)

    def put(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        doc_id = record[self.id_field]
        records = self._read(collection)
        for i, existing in enumerate(records):
            if existing.get(self.id_field) == doc_id:
                records[i] = dict(record)
                break
        else:
            records.append(dict(record))
        self._write(collection, records)
        return record

    def remove(self, collection: str, doc_id: str) -> bool:
        records = self._read(collection)
        remaining = [r for r in records if r.get(self.id_field) != doc_id]
        if len(remaining) == len(records):
            return False
        self._write(collection, remaining)
        return True

    def drop(self, collection: str):
        path = self._path(collection)
        try:
            if os.path.exists(path):
                os.remove(path)
            # Clean up the nesting directory once its last collection is gone
            directory = os.path.dirname(path)
            if directory != self.root and os.path.isdir(directory) and not os.listdir(directory):
                os.rmdir(directory)
        except OSError as e:
            raise StorageError(f"Failed to drop {path}: {e}") from e


def build_document_store(settings):
    """Construct the backend selected by settings."""
    if settings.get_storage_backend() == "json":
        logger.info("Using JSON file document store at %s", settings.get_data_dir())
        return JsonFileDocumentStore(settings.get_data_dir())

    from llmchat.database import make_engine, make_session_factory
    logger.info("Using SQL document store at %s", settings.get_database_url())
    engine = make_engine(settings.get_database_url())
    return SqlDocumentStore(make_session_factory(engine))
