"""Public download endpoint for converted files."""
import logging
from pathlib import Path
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse
from converter.config import settings
from converter.errors import StorageError
from converter.formats import DEFAULT_TABLES
from converter.routes.jobs import get_storage_service
from converter.services.storage_service import StorageService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{bucket}/{path:path}")
async def get_file(
    bucket: str,
    path: str,
    storage: StorageService = Depends(get_storage_service),
):
    """
    Serve an object from the outputs bucket.

    Args:
        bucket: Bucket name; only the outputs bucket is public
        path: Object key

    Returns:
        The file contents with its format's MIME type
    """
    if bucket != settings.OUTPUT_BUCKET:
        raise HTTPException(status_code=404, detail="File not found")

    try:
        file_path = storage.local_path(bucket, path)
    except StorageError as e:
        logger.warning(f"Download of {bucket}/{path} failed: {e}")
        raise HTTPException(status_code=404, detail="File not found")

    fmt = Path(path).suffix.lower().lstrip(".")
    return FileResponse(
        file_path,
        media_type=DEFAULT_TABLES.mime_type(fmt),
        filename=Path(path).name,
    )
