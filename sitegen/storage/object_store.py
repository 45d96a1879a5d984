"""
Object storage for published artifacts.
"""

import asyncio
from pathlib import Path
from typing import Dict, Optional, Protocol, Tuple, Union, runtime_checkable

import structlog

from ..exceptions import UploadError

logger = structlog.get_logger()

Content = Union[str, bytes]


@runtime_checkable
class ObjectStore(Protocol):
    async def put(self, key: str, content: Content, content_type: str) -> None:
        ...


def _check_key(key: str) -> str:
    parts = key.split("/")
    if not key or key.startswith("/") or any(p in ("", ".", "..") for p in parts):
        raise UploadError(f"Invalid object key: {key!r}")
    return key


class InMemoryObjectStore:
    def __init__(self):
        self.objects: Dict[str, Tuple[bytes, str]] = {}

    async def put(self, key: str, content: Content, content_type: str) -> None:
        data = content.encode("utf-8") if isinstance(content, str) else content
        self.objects[_check_key(key)] = (data, content_type)

    def get(self, key: str) -> Optional[bytes]:
        entry = self.objects.get(key)
        return entry[0] if entry else None

    def get_text(self, key: str) -> Optional[str]:
        data = self.get(key)
        return data.decode("utf-8") if data is not None else None

    def keys(self, prefix: str = ""):
        return sorted(k for k in self.objects if k.startswith(prefix))


class LocalObjectStore:
    """Writes objects as files under a root directory.

    Content type is not persisted; it is implied by the key's extension.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root)

    def _path_for(self, key: str) -> Path:
        return self.root.joinpath(*_check_key(key).split("/"))

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(path)

    async def put(self, key: str, content: Content, content_type: str) -> None:
        path = self._path_for(key)
        data = content.encode("utf-8") if isinstance(content, str) else content
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            raise UploadError(f"Failed to write {key}: {e}") from e
        logger.debug("Object stored", key=key, content_type=content_type, size=len(data))

    def read_text(self, key: str) -> str:
        return self._path_for(key).read_text(encoding="utf-8")
