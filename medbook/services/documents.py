"""Filesystem-backed store for documents attached to consultations."""

import logging
import re
import uuid
from pathlib import Path

from medbook.core import config

logger = logging.getLogger(__name__)

ALLOWED_DOCUMENT_TYPES = {
    'application/pdf',
    'image/jpeg',
    'image/png',
    'image/webp',
    'text/plain',
}


class DocumentRejected(ValueError):
    pass


def sanitize_filename(filename: str) -> str:
    name = Path(filename or '').name
    name = re.sub(r'[^A-Za-z0-9._-]', '_', name).strip('._')
    return name or 'document'


def validate_document(filename: str, content_type: str | None, size: int) -> None:
    if content_type not in ALLOWED_DOCUMENT_TYPES:
        raise DocumentRejected(f'{filename}: unsupported file type {content_type!r}.')
    if size == 0:
        raise DocumentRejected(f'{filename}: file is empty.')
    if size > config.MAX_DOCUMENT_BYTES:
        raise DocumentRejected(f'{filename}: file exceeds {config.MAX_DOCUMENT_BYTES} bytes.')


def store_document(
    consultation_id: int,
    filename: str,
    content_type: str | None,
    content: bytes,
    root: Path | None = None,
) -> dict:
    """Write one document and return the metadata recorded on the consultation."""
    validate_document(filename, content_type, len(content))

    base = Path(root or config.DOCUMENTS_DIR)
    relative_path = Path(str(consultation_id)) / f'{uuid.uuid4().hex}_{sanitize_filename(filename)}'
    target = base / relative_path
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(content)
    logger.info('Stored document %s for consultation %s', relative_path, consultation_id)

    return {
        'name': filename,
        'path': relative_path.as_posix(),
        'type': content_type,
        'size': len(content),
    }
