"""
Safe State Management - process-safe JSON documents with locking.

The ledger document is read once at startup and overwritten on every change.
Writes go to a temp file that is fsync'd and renamed over the target, so a
crash mid-write leaves either the old or the new document, never a torn one.
The previous document is kept as ``<name>.json.bak`` and used to recover
from a corrupt primary file.

Usage:
    from tradegate.safe_state import SafeState

    state = SafeState(Path("~/.tradegate/positions.json").expanduser())
    data = state.read()
    state.write({"positions": [...]})
"""

import json
import logging
import os
import shutil
import time
from pathlib import Path
from typing import Any, Union

from filelock import FileLock, Timeout as FileLockTimeout

logger = logging.getLogger(__name__)


class StateLockError(Exception):
    """Raised when unable to acquire state file lock."""
    pass


class StateReadError(Exception):
    """Raised when unable to read state file."""
    pass


class StateWriteError(Exception):
    """Raised when unable to write state file."""
    pass


class SafeState:
    """Locked, atomic JSON file."""

    def __init__(
        self,
        file_path: Union[str, Path],
        default_value: Any = None,
        lock_timeout: float = 10.0,
        retry_count: int = 3,
        retry_delay: float = 0.1,
    ):
        """
        Args:
            file_path: Path to the state JSON file
            default_value: Value returned when the file doesn't exist (default: empty dict)
            lock_timeout: Seconds to wait for lock acquisition
            retry_count: Attempts on transient I/O failures
            retry_delay: Base delay between attempts (exponential backoff)
        """
        self.file_path = Path(file_path)
        self.default_value = default_value if default_value is not None else {}
        self.lock_timeout = lock_timeout
        self.retry_count = retry_count
        self.retry_delay = retry_delay

        self.lock_path = self.file_path.with_suffix(self.file_path.suffix + ".lock")
        self.backup_path = self.file_path.with_suffix(self.file_path.suffix + ".bak")
        self.temp_path = self.file_path.with_suffix(self.file_path.suffix + ".tmp")

        self._lock = FileLock(str(self.lock_path), timeout=lock_timeout)

    def _acquire(self) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._lock.acquire(timeout=self.lock_timeout)
        except FileLockTimeout:
            logger.warning(f"Timeout acquiring lock for {self.file_path}")
            raise StateLockError(f"Could not acquire lock for {self.file_path}")

    def _release(self) -> None:
        if self._lock.is_locked:
            self._lock.release()

    def read(self) -> Any:
        """
        Read the document.

        Returns:
            Parsed JSON data, or default_value if the file doesn't exist
        """
        if not self.file_path.exists() and not self.backup_path.exists():
            return self.default_value

        self._acquire()
        try:
            return self._read_with_retry()
        finally:
            self._release()

    def _read_with_retry(self) -> Any:
        last_error = None

        for attempt in range(self.retry_count):
            try:
                if not self.file_path.exists():
                    return self._read_backup() if self.backup_path.exists() else self.default_value

                content = self.file_path.read_text(encoding="utf-8")
                if not content.strip():
                    return self.default_value
                return json.loads(content)

            except json.JSONDecodeError as e:
                if self.backup_path.exists():
                    logger.warning(f"JSON decode error in {self.file_path}, trying backup: {e}")
                    return self._read_backup()
                raise StateReadError(f"Corrupt state file {self.file_path}: {e}")

            except OSError as e:
                last_error = e
                if attempt < self.retry_count - 1:
                    time.sleep(self.retry_delay * (2 ** attempt))

        logger.error(f"Failed to read {self.file_path} after {self.retry_count} attempts: {last_error}")
        raise StateReadError(f"Could not read {self.file_path}: {last_error}")

    def _read_backup(self) -> Any:
        try:
            return json.loads(self.backup_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StateReadError(f"Backup {self.backup_path} unusable: {e}")

    def write(self, data: Any) -> None:
        """Replace the document atomically."""
        self._acquire()
        try:
            self._write_with_retry(data)
        finally:
            self._release()

    def _write_with_retry(self, data: Any) -> None:
        payload = json.dumps(data, indent=2)
        last_error = None

        for attempt in range(self.retry_count):
            try:
                if self.file_path.exists():
                    shutil.copy2(self.file_path, self.backup_path)

                with open(self.temp_path, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())

                os.replace(self.temp_path, self.file_path)
                return

            except OSError as e:
                last_error = e
                if attempt < self.retry_count - 1:
                    time.sleep(self.retry_delay * (2 ** attempt))

        logger.error(f"Failed to write {self.file_path} after {self.retry_count} attempts: {last_error}")
        raise StateWriteError(f"Could not write {self.file_path}: {last_error}")
