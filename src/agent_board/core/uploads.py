"""Files attached to task chat messages.

Uploads are stored as ``<root>/<task_id>/<uuid>.<ext>``. The URL returned
for a stored file is what clients put in a chat message's attachments.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from pathlib import Path

from agent_board.core.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
DEFAULT_EXTENSION = "png"

_EXTENSION = re.compile(r"^[A-Za-z0-9]{1,10}$")
_STORED_NAME = re.compile(r"^[0-9a-f]{32}\.[A-Za-z0-9]{1,10}$")


@dataclass
class Attachment:
    filename: str
    path: str
    size: int


def _extension(original_name: str | None) -> str:
    if original_name and "." in original_name:
        ext = original_name.rsplit(".", 1)[1]
        if _EXTENSION.match(ext):
            return ext.lower()
    return DEFAULT_EXTENSION


def save_attachment(
    root: Path, task_id: str, data: bytes, original_name: str | None = None
) -> Attachment:
    if not data:
        raise ValidationError("No file provided")
    if len(data) > MAX_UPLOAD_BYTES:
        raise ValidationError(f"File exceeds {MAX_UPLOAD_BYTES // (1024 * 1024)} MB limit")

    task_dir = root / task_id
    task_dir.mkdir(parents=True, exist_ok=True)
    filename = f"{uuid.uuid4().hex}.{_extension(original_name)}"
    (task_dir / filename).write_bytes(data)
    logger.info("Stored %d byte attachment %s for %s", len(data), filename, task_id)
    return Attachment(
        filename=filename,
        path=f"/api/tasks/{task_id}/chat/upload/{filename}",
        size=len(data),
    )


def attachment_path(root: Path, task_id: str, filename: str) -> Path:
    """Resolve a stored attachment, refusing names this module did not create."""
    if not _STORED_NAME.match(filename):
        raise NotFoundError(f"Attachment not found: {filename}")
    path = root / task_id / filename
    if not path.is_file():
        raise NotFoundError(f"Attachment not found: {filename}")
    return path
