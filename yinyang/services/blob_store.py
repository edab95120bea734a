import logging
import mimetypes
import uuid
from pathlib import Path

logger = logging.getLogger(__name__)


def extension_for(content_type: str) -> str:
    """'image/jpeg; charset=binary' -> 'jpeg'. The subtype names the stored file's suffix."""
    mime = content_type.split(";", 1)[0].strip().lower()
    _, _, subtype = mime.partition("/")
    return subtype or "bin"


class BlobStore:
    """Local directory of stored images, published under a public base URL."""

    def __init__(self, root: str, base_url: str) -> None:
        self._root = Path(root)
        self._base_url = base_url if base_url.endswith("/") else base_url + "/"

    @property
    def base_url(self) -> str:
        return self._base_url

    def new_storage_id(self, content_type: str) -> str:
        return f"{uuid.uuid4().hex}.{extension_for(content_type)}"

    def owns(self, url: str) -> bool:
        return url.startswith(self._base_url)

    def url_for(self, storage_id: str) -> str:
        return f"{self._base_url}{storage_id}"

    def _path_for(self, storage_id: str) -> Path:
        path = (self._root / storage_id).resolve()
        if path.parent != self._root.resolve():
            raise ValueError(f"invalid storage id: {storage_id!r}")
        return path

    def put(self, storage_id: str, data: bytes) -> None:
        path = self._path_for(storage_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.debug("[blobs] stored | id=%s | bytes=%d", storage_id, len(data))

    def get(self, storage_id: str) -> bytes | None:
        try:
            path = self._path_for(storage_id)
        except ValueError:
            return None
        if not path.is_file():
            return None
        return path.read_bytes()

    def delete(self, storage_id: str) -> None:
        self._path_for(storage_id).unlink(missing_ok=True)

    def guess_content_type(self, storage_id: str) -> str:
        guessed, _ = mimetypes.guess_type(storage_id)
        return guessed or f"image/{storage_id.rsplit('.', 1)[-1]}"
