from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from starlette.datastructures import UploadFile

from certportal.errors import ValidationError

logger = logging.getLogger(__name__)

SPOOL_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class SpooledUpload:
    path: Path
    filename: str
    content_type: str | None
    byte_size: int


def _unlink_best_effort(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove upload spool file %s: %s", path, e)


def _format_limit(max_bytes: int) -> str:
    mb, rest = divmod(max_bytes, 1024 * 1024)
    if mb and not rest:
        return f"{mb} MB"
    return f"{max_bytes} bytes"


@asynccontextmanager
async def spool_upload(
    upload: UploadFile,
    uploads_dir: Path,
    *,
    max_bytes: int,
) -> AsyncIterator[SpooledUpload]:
    """Copy an incoming upload to a request-scoped temp file.

    The file is removed on exit no matter how the block ends, so a failed or
    cancelled upload never leaves anything behind in `uploads_dir`.
    """

    filename = (upload.filename or "").strip()
    if not filename:
        raise ValidationError("No certificate file was selected")

    uploads_dir.mkdir(parents=True, exist_ok=True)
    temp_path = (uploads_dir / f"upload-{uuid.uuid4().hex}.tmp").resolve()
    byte_size = 0

    try:
        with temp_path.open("wb") as out:
            while True:
                chunk = await upload.read(SPOOL_CHUNK_SIZE)
                if not chunk:
                    break
                byte_size += len(chunk)
                if byte_size > max_bytes:
                    raise ValidationError(
                        f"Certificate file is larger than {_format_limit(max_bytes)}",
                        context={"filename": filename},
                    )
                out.write(chunk)

        if byte_size <= 0:
            raise ValidationError("Uploaded file was empty", context={"filename": filename})

        content_type = upload.content_type
        if content_type is not None and not content_type.strip():
            content_type = None

        yield SpooledUpload(
            path=temp_path,
            filename=Path(filename).name,
            content_type=content_type,
            byte_size=byte_size,
        )
    finally:
        await upload.close()
        _unlink_best_effort(temp_path)
