"""
State Management for Realms Notifications.
Persists realm, governance and proposal records in a single JSON state file.

Every write replaces the whole file atomically (temp file, fsync, rename), so a
crash leaves either the previous document or the new one on disk.

State file structure:
    {
        "version": 1,
        "realm": {"realm_key": "...", ...} | null,
        "governances": {"<governance key>": {...}},
        "proposals": {"<proposal key>": {...}}
    }
"""

import json
import logging
import os
import shutil
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import ValidationError

from .exceptions import StorageError
from .models import GovernanceRecord, ProposalRecord, RealmConfig

logger = logging.getLogger(__name__)

STATE_VERSION = 1

ProposalMutator = Callable[[Optional[ProposalRecord]], Optional[ProposalRecord]]


def _empty_state() -> Dict[str, Any]:
    return {"version": STATE_VERSION, "realm": None, "governances": {}, "proposals": {}}


class StateStore:
    """
    Durable store for the notifier.

    All reads are served from an in-memory copy loaded at open time; all
    writes go through ``_commit`` which rewrites the state file atomically.
    A re-entrant lock serializes access between the poll cycle and the
    reminder sweep.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.RLock()
        self._state = self._load()

    def _load(self) -> Dict[str, Any]:
        """
        Load state from disk, creating an empty state file if none exists.

        Raises:
            StorageError: If the file exists but cannot be parsed
        """
        if not self.path.exists():
            logger.info(f"State file not found at {self.path}, creating new empty state")
            state = _empty_state()
            self._write(state)
            return state

        try:
            with open(self.path, "r") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Failed to read state file {self.path}: {e}") from e

        if not isinstance(raw, dict) or raw.get("version") != STATE_VERSION:
            raise StorageError(f"Unsupported state file format in {self.path}")

        state = _empty_state()
        state.update(raw)

        # Keep a copy of the last good state around
        backup_path = self.path.with_suffix(self.path.suffix + ".backup")
        try:
            shutil.copy2(self.path, backup_path)
            logger.debug(f"Created backup at {backup_path}")
        except OSError as e:
            logger.warning(f"Could not create state backup at {backup_path}: {e}")

        logger.info(
            f"Loaded state from {self.path}: {len(state['proposals'])} proposals, "
            f"{len(state['governances'])} governances"
        )
        return state

    def _write(self, state: Dict[str, Any]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(temp_path, "w") as f:
                json.dump(state, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())

            # Atomic rename
            os.replace(temp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to save state to {self.path}: {e}") from e

    def _commit(self, section: str, key: str, value: Optional[Dict[str, Any]]) -> None:
        """Apply one keyed change and persist; memory is only updated once disk is."""
        candidate = dict(self._state)
        candidate[section] = dict(self._state[section])
        if value is None:
            candidate[section].pop(key, None)
        else:
            candidate[section][key] = value
        self._write(candidate)
        self._state = candidate

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[ProposalRecord]:
        """Return the stored proposal record or None."""
        with self._lock:
            data = self._state["proposals"].get(key)
        if data is None:
            return None
        try:
            return ProposalRecord.model_validate(data)
        except ValidationError as e:
            raise StorageError(f"Corrupt proposal record {key}: {e}") from e

    def put(self, record: ProposalRecord) -> None:
        """Insert or overwrite a proposal record."""
        with self._lock:
            self._commit("proposals", record.key, record.model_dump(mode="json"))
        logger.debug(f"Saved proposal {record.key} (state {record.state.value})")

    def update_proposal(self, key: str, mutator: ProposalMutator) -> Optional[ProposalRecord]:
        """
        Atomically read, modify and write one proposal record.

        The mutator receives the current record (or None) and returns the
        record to store, or None to leave the store untouched.

        Returns:
            The stored record after the update
        """
        with self._lock:
            current = self.get(key)
            updated = mutator(current)
            if updated is None or updated == current:
                return current
            if updated.key != key:
                raise StorageError(f"Mutator changed record key {key} -> {updated.key}")
            self.put(updated)
            return updated

    def scan_active(self) -> List[ProposalRecord]:
        """All proposals currently in the Voting state."""
        return [
            record for record in self.proposals().values()
            if record.state.is_voting
        ]

    def proposals(self) -> Dict[str, ProposalRecord]:
        """
        Copy of every stored proposal record keyed by proposal key.

        Records that fail validation are logged and left out, so one bad entry
        does not stop the others from being processed.
        """
        with self._lock:
            raw = dict(self._state["proposals"])
        records = {}
        for key, data in raw.items():
            try:
                records[key] = ProposalRecord.model_validate(data)
            except ValidationError as e:
                logger.warning(f"Skipping corrupt proposal record {key}: {e}")
        return records

    # ------------------------------------------------------------------
    # Governances
    # ------------------------------------------------------------------

    def get_governance(self, key: str) -> Optional[GovernanceRecord]:
        with self._lock:
            data = self._state["governances"].get(key)
        if data is None:
            return None
        try:
            return GovernanceRecord.model_validate(data)
        except ValidationError as e:
            raise StorageError(f"Corrupt governance record {key}: {e}") from e

    def put_governance(self, record: GovernanceRecord) -> None:
        with self._lock:
            self._commit("governances", record.key, record.model_dump(mode="json"))
        logger.debug(f"Saved governance {record.key} (proposals_count {record.proposals_count})")

    # ------------------------------------------------------------------
    # Realm
    # ------------------------------------------------------------------

    def get_realm_config(self) -> Optional[RealmConfig]:
        with self._lock:
            data = self._state.get("realm")
        if data is None:
            return None
        return RealmConfig.model_validate(data)

    def put_realm_config(self, realm_config: RealmConfig) -> None:
        """
        Record the realm this store tracks.

        Raises:
            StorageError: If the store was already seeded with a different realm
        """
        with self._lock:
            existing = self.get_realm_config()
            if existing is not None and existing != realm_config:
                raise StorageError(
                    f"State file {self.path} belongs to realm {existing.realm_key}, "
                    f"refusing to reuse it for {realm_config.realm_key}"
                )
            if existing == realm_config:
                return
            candidate = dict(self._state)
            candidate["realm"] = realm_config.model_dump(mode="json")
            self._write(candidate)
            self._state = candidate
        logger.info(f"Recorded realm {realm_config.realm_key} in {self.path}")
