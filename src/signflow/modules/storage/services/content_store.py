import logging
import os
import tempfile
from pathlib import Path

from signflow.errors import NotFoundError, StorageError
from signflow.utils.hashing import sha256_hex_bytes, sha256_hex_stream

logger = logging.getLogger(__name__)


class ContentStore:
    """Almacén de blobs direccionado por ruta.

    Las rutas son relativas y canónicas (``documents/<id>/original.pdf``,
    ``signed/<id>-step2-...pdf``); cada escritura devuelve el SHA-256 de los
    bytes exactos escritos.
    """

    def put(self, data: bytes, path: str) -> str:
        raise NotImplementedError

    def get(self, path: str) -> bytes:
        raise NotImplementedError

    def stream_hash(self, path: str) -> str:
        raise NotImplementedError

    def exists(self, path: str) -> bool:
        raise NotImplementedError


class LocalContentStore(ContentStore):
    """Disco local; escribe en un temporal y renombra para no exponer escrituras parciales."""

    def __init__(self, root: str):
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def _resolve(self, path: str) -> Path:
        if not path:
            raise StorageError("Empty storage path")
        full = (self.root / path).resolve()
        if full != self.root and self.root not in full.parents:
            raise StorageError(f"Path escapes storage root: {path}")
        return full

    def put(self, data: bytes, path: str) -> str:
        target = self._resolve(path)
        if target.exists():
            # Solo-anexado: una ruta nunca se sobrescribe
            raise StorageError(f"Refusing to overwrite existing blob: {path}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".tmp-", suffix=target.suffix)
            try:
                with os.fdopen(fd, "wb") as tmp:
                    tmp.write(data)
                    tmp.flush()
                    os.fsync(tmp.fileno())
                os.replace(tmp_name, target)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.remove(tmp_name)
                raise
        except OSError as exc:
            logger.error("Failed writing blob %s: %s", path, exc)
            raise StorageError(f"Could not write {path}") from exc
        logger.debug("Stored %d bytes at %s", len(data), path)
        return sha256_hex_bytes(data)

    def get(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise NotFoundError(f"Stored file not found: {path}")
        try:
            return target.read_bytes()
        except OSError as exc:
            raise StorageError(f"Could not read {path}") from exc

    def stream_hash(self, path: str) -> str:
        target = self._resolve(path)
        if not target.is_file():
            raise NotFoundError(f"Stored file not found: {path}")
        try:
            with open(target, "rb") as f:
                return sha256_hex_stream(f)
        except OSError as exc:
            raise StorageError(f"Could not hash {path}") from exc

    def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()
