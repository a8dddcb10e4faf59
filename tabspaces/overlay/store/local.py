"""Local filesystem storage backend.

Stores each key as a JSON file under a unified data root with optional
namespace prefix::

    {data_root}/{prefix}/overlay/{key}.json

When prefix is None, the path collapses to::

    {data_root}/overlay/{key}.json

Uses ``anyio.to_thread.run_sync`` for non-blocking file I/O.

Writes are atomic per key: data is written to a temporary file in the same
directory, then renamed to the target path, so a crash mid-write leaves the
previous value readable.
"""

from __future__ import annotations

import contextlib
import json
import os
import tempfile
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any

from anyio import to_thread

from tabspaces.overlay.store.base import ChangeNotifier, StorageChange, StorageReadError, StorageWriteError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

_MISSING = object()


class LocalJsonStorage:
    """Local filesystem implementation of the KeyValueStorage protocol.

    Layout::

        {base}/overlay/{key}.json

    Where ``base`` is ``data_root / prefix`` (or just ``data_root`` if no prefix).
    """

    def __init__(self, data_root: str | Path, prefix: str | None = None) -> None:
        base = Path(data_root)
        if prefix:
            base = base / prefix
        self._base = base / "overlay"
        self._notifier = ChangeNotifier()

    def _path(self, key: str) -> Path:
        return self._base / f"{key}.json"

    # -- Read ------------------------------------------------------------------

    async def get(self, keys: Iterable[str], defaults: Mapping[str, Any] | None = None) -> dict[str, Any]:
        defaults = defaults or {}
        result: dict[str, Any] = {}
        for key in keys:
            value = await self._read(key)
            if value is not _MISSING:
                result[key] = value
            elif key in defaults:
                result[key] = defaults[key]
        return result

    async def _read(self, key: str) -> Any:
        try:
            raw = await to_thread.run_sync(partial(_read_file, self._path(key)))
        except FileNotFoundError:
            return _MISSING
        except OSError as exc:
            raise StorageReadError(key, str(exc)) from exc
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageReadError(key, f"invalid JSON ({exc})") from exc

    # -- Write -----------------------------------------------------------------

    async def set(self, record: Mapping[str, Any]) -> None:
        """Write every key of ``record``.

        All values are encoded before the first write, so an unserializable
        value leaves storage untouched.  If a write fails part way, the keys
        already written are still announced to listeners.
        """
        encoded: dict[str, str] = {}
        for key, value in record.items():
            try:
                encoded[key] = json.dumps(value, indent=2)
            except (TypeError, ValueError) as exc:
                raise StorageWriteError(key, f"not JSON serializable ({exc})") from exc

        changes: dict[str, StorageChange] = {}
        try:
            for key, data in encoded.items():
                try:
                    old = await self._read(key)
                except StorageReadError:
                    old = _MISSING
                try:
                    await to_thread.run_sync(partial(_atomic_write, self._path(key), data))
                except OSError as exc:
                    raise StorageWriteError(key, str(exc)) from exc
                changes[key] = StorageChange(old_value=None if old is _MISSING else old, new_value=json.loads(data))
        finally:
            self._notifier.notify(changes)

    def subscribe(self, listener: Callable[[dict[str, StorageChange]], None]) -> Callable[[], None]:
        return self._notifier.subscribe(listener)


# -- Sync helpers (run in thread pool) -----------------------------------------


def _atomic_write(path: Path, data: str) -> None:
    """Write data atomically: temp file + rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise


def _read_file(path: Path) -> str:
    """Read file contents.  Raises ``FileNotFoundError`` if missing."""
    return path.read_text(encoding="utf-8")
