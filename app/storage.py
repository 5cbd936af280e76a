from pathlib import Path, PurePosixPath
from typing import BinaryIO, Dict, Iterator, Union
import logging
import os
import uuid

import aiofiles
import aiofiles.os

from app.errors import Internal, NotFound

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024

Blob = Union[bytes, bytearray, memoryview, BinaryIO]


def _chunks(data: Blob) -> Iterator[bytes]:
    if isinstance(data, (bytes, bytearray, memoryview)):
        yield bytes(data)
        return
    while True:
        chunk = data.read(CHUNK_SIZE)
        if not chunk:
            return
        yield chunk


def _check_relative(path: str) -> PurePosixPath:
    rel = PurePosixPath(path)
    if not path or rel.is_absolute() or ".." in rel.parts:
        raise Internal(f"invalid storage path: {path!r}")
    return rel


class Storage:
    """Blob store addressed by relative posix paths.

    ``put`` takes bytes or a readable binary file, which is copied in chunks.
    """

    async def put(self, path: str, data: Blob):
        raise NotImplementedError

    async def get(self, path: str) -> bytes:
        raise NotImplementedError


class LocalStorage(Storage):
    def __init__(self, root: Path):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        return self.root.joinpath(*_check_relative(path).parts)

    async def put(self, path: str, data: Blob):
        dest = self._resolve(path)
        tmp = dest.with_name(f".{dest.name}.{uuid.uuid4().hex}.part")
        try:
            await aiofiles.os.makedirs(dest.parent, exist_ok=True)
            async with aiofiles.open(tmp, "wb") as f:
                for chunk in _chunks(data):
                    await f.write(chunk)
            # readers never see a half-written blob
            await aiofiles.os.replace(tmp, dest)
        except OSError as e:
            logger.error("could not write %s: %s", path, e)
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise Internal(f"could not write {path}") from e

    async def get(self, path: str) -> bytes:
        src = self._resolve(path)
        try:
            async with aiofiles.open(src, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            raise NotFound(f"no such object: {path}")


class MemoryStorage(Storage):
    def __init__(self):
        self.objects: Dict[str, bytes] = {}

    async def put(self, path: str, data: Blob):
        self.objects[str(_check_relative(path))] = b"".join(_chunks(data))

    async def get(self, path: str) -> bytes:
        try:
            return self.objects[str(_check_relative(path))]
        except KeyError:
            raise NotFound(f"no such object: {path}")
