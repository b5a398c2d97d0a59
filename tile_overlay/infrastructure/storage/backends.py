# tile_overlay/infrastructure/storage/backends.py
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
import aiofiles.os

from tile_overlay.domain.errors import StorageWriteError

logger = logging.getLogger(__name__)
if not logger.handlers:
    handler = logging.StreamHandler()
    formatter = logging.Formatter('%(asctime)s [%(levelname)s] [storage] %(message)s', '%Y-%m-%d %H:%M:%S')
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False


class KeyValueFileStore:
    """A JSON file holding a ``key -> string`` map; this store owns one key of it."""

    def __init__(self, path, key: str):
        self.path = Path(path)
        self.key = key

    def __repr__(self):
        return f"KeyValueFileStore({str(self.path)!r}, {self.key!r})"

    async def _load_map(self) -> Dict[str, Any]:
        if not await aiofiles.os.path.exists(self.path):
            return {}
        async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
            data = json.loads(await f.read() or "{}")
        return data if isinstance(data, dict) else {}

    async def read(self) -> Optional[str]:
        return (await self._load_map()).get(self.key)

    async def write(self, value: str) -> None:
        try:
            data = await self._load_map()
        except ValueError:
            logger.warning(f"{self!r} held unreadable JSON, starting it over.")
            data = {}
        data[self.key] = value

        await aiofiles.os.makedirs(self.path.parent, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(data, ensure_ascii=False))
        await aiofiles.os.replace(tmp_path, self.path)


class StorageChain:
    """Ordered storage backends: read from the first one holding templates,
    write to all of them. Only the first (primary) write may fail the call."""

    def __init__(self, backends: List[KeyValueFileStore]):
        if not backends:
            raise ValueError("StorageChain needs at least one backend")
        self.backends = list(backends)

    @property
    def primary(self) -> KeyValueFileStore:
        return self.backends[0]

    async def read_document(self) -> Optional[Dict[str, Any]]:
        for index, backend in enumerate(self.backends):
            try:
                raw = await backend.read()
                doc = json.loads(raw) if raw else None
            except (OSError, ValueError, TypeError) as e:
                logger.warning(f"Failed to read stored templates from {backend!r}: {type(e).__name__}: {e}")
                continue

            if isinstance(doc, dict) and isinstance(doc.get("templates"), dict) and doc["templates"]:
                if index > 0:
                    logger.info(f"Migrating templates from backup store {backend!r}.")
                return doc
        return None

    async def write_document(self, document: Dict[str, Any]) -> None:
        payload = json.dumps(document, ensure_ascii=False)
        try:
            await self.primary.write(payload)
        except OSError as e:
            raise StorageWriteError(f"Failed to write templates to {self.primary!r}: {e}") from e

        for backend in self.backends[1:]:
            try:
                await backend.write(payload)
            except Exception as e:
                logger.warning(f"Failed to write backup copy of templates to {backend!r}: {type(e).__name__}: {e}")
