"""
Registry snapshots

The hub writes its registry to a JSON file so that a restarted hub still
knows every node and descriptor. Writes are periodic and only happen when the
store changed since the last write; registering calls never wait for them.
"""

import asyncio
import json
import logging
import os
from pathlib import Path

import aiofiles

from ..shared.exceptions import PersistenceError
from .models import RegistrySnapshot
from .registry import RegistryStore

logger = logging.getLogger(__name__)


class RegistrySnapshotter:
    """Periodic, change-driven JSON snapshots of a ``RegistryStore``."""

    def __init__(
        self,
        store: RegistryStore,
        path: str | Path,
        interval: float = 10.0,
    ):
        self.store = store
        self.path = Path(path)
        self.interval = interval
        self._saved_version: int | None = None
        self._task: asyncio.Task | None = None
        self._write_lock = asyncio.Lock()

    @property
    def dirty(self) -> bool:
        """Whether the store changed since the last successful write."""
        return self._saved_version != self.store.version

    async def load(self) -> bool:
        """Restore the store from the snapshot file.

        Returns True when a snapshot was loaded. A missing file leaves the
        store empty; an unreadable or corrupt file is logged and ignored.
        """
        if not self.path.exists():
            logger.info(f"No registry snapshot at {self.path}, starting empty")
            return False

        try:
            async with aiofiles.open(self.path, encoding="utf-8") as f:
                data = json.loads(await f.read())
            snapshot = RegistrySnapshot.model_validate(data)
        except (OSError, ValueError) as e:
            # Covers UnicodeDecodeError, JSONDecodeError and ValidationError
            error = PersistenceError(f"Failed to load snapshot {self.path}: {e}")
            logger.error(error.to_error_string())
            return False

        self.store.restore(snapshot)
        self._saved_version = self.store.version
        logger.info(
            f"Registry restored: {len(snapshot.nodes)} node(s), "
            f"{len(snapshot.tools)} tool(s), {len(snapshot.resources)} resource(s), "
            f"{len(snapshot.prompts)} prompt(s); all nodes assumed reconnecting"
        )
        return True

    async def save(self) -> None:
        """Write the current store to disk, atomically replacing the file."""
        async with self._write_lock:
            version = self.store.version
            payload = json.dumps(self.store.snapshot().to_wire(), indent=2)
            tmp_path = self.path.with_name(self.path.name + ".tmp")
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                    await f.write(payload)
                os.replace(tmp_path, self.path)
            except OSError as e:
                raise PersistenceError(f"Failed to write snapshot {self.path}: {e}")
            self._saved_version = version
            logger.debug(f"Registry snapshot saved (version {version})")

    async def save_if_dirty(self) -> bool:
        """Write a snapshot only if the store changed. Never raises."""
        if not self.dirty:
            return False
        try:
            await self.save()
        except PersistenceError as e:
            logger.error(e.to_error_string())
            return False
        return True

    async def flush(self) -> None:
        """Force pending changes to disk, e.g. on shutdown."""
        await self.save_if_dirty()

    async def start(self) -> None:
        """Start the periodic snapshot task."""
        if self._task is None:
            self._task = asyncio.create_task(self._snapshot_loop())

    async def stop(self) -> None:
        """Stop the periodic snapshot task."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _snapshot_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.save_if_dirty()
