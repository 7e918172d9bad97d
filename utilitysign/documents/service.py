import os
from typing import Iterable, Optional

from utilitysign.config import settings
from utilitysign.documents.schemas import UploadedFile


def validate_upload(
    file: UploadedFile,
    *,
    max_size_mb: Optional[int] = None,
    accepted_types: Optional[Iterable[str]] = None,
) -> Optional[str]:
    """Return why an uploaded file is rejected, or None when it is acceptable."""
    max_size_mb = settings.upload_max_size_mb if max_size_mb is None else max_size_mb
    accepted = list(settings.upload_accepted_types if accepted_types is None else accepted_types)

    if file.size_bytes > max_size_mb * 1024 * 1024:
        return f"File size must be less than {max_size_mb}MB"

    extension = os.path.splitext(file.filename)[1].lower()
    if extension not in accepted:
        return f"File type must be one of: {', '.join(accepted)}"
    return None
