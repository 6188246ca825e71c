"""
Experiment storage adapters.

The manager treats persistence as optional and fallible. Every adapter
raises ``StorageError`` on failure; the manager logs it, emits a storage
error event and keeps its in-memory state.
"""

import copy
import json
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from promptlab.errors import StorageError
from promptlab.experiments.models import Base, ExperimentRow
from promptlab.experiments.schemas import Experiment
from promptlab.logging import get_component_logger

log = get_component_logger("experiments")


class ExperimentStore(ABC):
    """Persistence contract for experiment definitions."""

    @abstractmethod
    def save(self, experiment: Experiment) -> None:
        """Insert or replace an experiment."""

    @abstractmethod
    def load(self, experiment_id: str) -> Optional[Experiment]:
        """Load one experiment, or None if it is not stored."""

    @abstractmethod
    def list(self) -> List[Experiment]:
        """Load every stored experiment."""

    @abstractmethod
    def delete(self, experiment_id: str) -> bool:
        """Delete an experiment. Returns True if it existed."""


class InMemoryExperimentStore(ExperimentStore):
    """Store keeping serialized copies in a dictionary."""

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def save(self, experiment: Experiment) -> None:
        with self._lock:
            self._data[experiment.id] = experiment.to_dict()

    def load(self, experiment_id: str) -> Optional[Experiment]:
        with self._lock:
            data = self._data.get(experiment_id)
        return Experiment.from_dict(copy.deepcopy(data)) if data else None

    def list(self) -> List[Experiment]:
        with self._lock:
            items = [copy.deepcopy(d) for d in self._data.values()]
        return [Experiment.from_dict(d) for d in items]

    def delete(self, experiment_id: str) -> bool:
        with self._lock:
            return self._data.pop(experiment_id, None) is not None


class JsonFileExperimentStore(ExperimentStore):
    """
    Store writing one JSON file per experiment.

    Example:
        >>> store = JsonFileExperimentStore("data/experiments")
        >>> store.save(experiment)
        >>> store.load(experiment.id)
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self._lock = threading.Lock()

    def _path(self, experiment_id: str) -> Path:
        return self.directory / f"{experiment_id}.json"

    def save(self, experiment: Experiment) -> None:
        path = self._path(experiment.id)
        try:
            with self._lock:
                self.directory.mkdir(parents=True, exist_ok=True)
                tmp_path = path.with_suffix(".json.tmp")
                with open(tmp_path, "w") as f:
                    json.dump(experiment.to_dict(), f, indent=2)
                tmp_path.replace(path)
        except OSError as e:
            raise StorageError(f"Failed to save {path}: {e}", "save", experiment.id) from e
        log.debug(f"Saved experiment {experiment.id} to {path}")

    def load(self, experiment_id: str) -> Optional[Experiment]:
        path = self._path(experiment_id)
        if not path.exists():
            return None
        return self._read(path)

    def list(self) -> List[Experiment]:
        if not self.directory.exists():
            return []
        return [self._read(path) for path in sorted(self.directory.glob("*.json"))]

    def delete(self, experiment_id: str) -> bool:
        path = self._path(experiment_id)
        try:
            with self._lock:
                if not path.exists():
                    return False
                path.unlink()
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}", "delete", experiment_id) from e
        return True

    def _read(self, path: Path) -> Experiment:
        try:
            with open(path, "r") as f:
                data = json.load(f)
            return Experiment.from_dict(data)
        except (OSError, ValueError, KeyError) as e:
            raise StorageError(f"Failed to load {path}: {e}", "load", path.stem) from e


class SqlAlchemyExperimentStore(ExperimentStore):
    """
    Store backed by a SQL database through SQLAlchemy.

    Example:
        >>> store = SqlAlchemyExperimentStore("sqlite:///experiments.db")
        >>> store.save(experiment)
    """

    def __init__(self, database_url: str = "sqlite:///experiments.db", echo: bool = False):
        """
        Initialize database connection.

        Args:
            database_url: SQLAlchemy database URL
            echo: Whether to echo SQL statements (for debugging)
        """
        self.database_url = database_url
        try:
            self.engine = create_engine(database_url, echo=echo)
            self.SessionLocal = sessionmaker(bind=self.engine)
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to open {database_url}: {e}", "connect") from e

        log.info(f"Initialized SqlAlchemyExperimentStore: {database_url}")

    def save(self, experiment: Experiment) -> None:
        try:
            with self.SessionLocal() as session:
                row = session.get(ExperimentRow, experiment.id)
                if row is None:
                    row = ExperimentRow(experiment_id=experiment.id)
                    session.add(row)
                row.name = experiment.name
                row.status = experiment.status.value
                row.target_metric = experiment.target_metric.value
                row.created_by = experiment.created_by
                row.data = experiment.to_dict()
                row.created_at = experiment.created_at
                row.updated_at = experiment.updated_at
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to save experiment: {e}", "save", experiment.id) from e

    def load(self, experiment_id: str) -> Optional[Experiment]:
        try:
            with self.SessionLocal() as session:
                row = session.get(ExperimentRow, experiment_id)
                data = dict(row.data) if row is not None else None
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to load experiment: {e}", "load", experiment_id) from e
        return self._decode(data, experiment_id) if data else None

    def list(self) -> List[Experiment]:
        try:
            with self.SessionLocal() as session:
                rows = session.scalars(
                    select(ExperimentRow).order_by(ExperimentRow.created_at)
                ).all()
                items = [(row.experiment_id, dict(row.data)) for row in rows]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list experiments: {e}", "list") from e
        return [self._decode(data, experiment_id) for experiment_id, data in items]

    def delete(self, experiment_id: str) -> bool:
        try:
            with self.SessionLocal() as session:
                row = session.get(ExperimentRow, experiment_id)
                if row is None:
                    return False
                session.delete(row)
                session.commit()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to delete experiment: {e}", "delete", experiment_id) from e
        return True

    def close(self) -> None:
        self.engine.dispose()

    @staticmethod
    def _decode(data: Dict[str, Any], experiment_id: str) -> Experiment:
        try:
            return Experiment.from_dict(data)
        except (ValueError, KeyError) as e:
            raise StorageError(f"Corrupt experiment record: {e}", "load", experiment_id) from e
