"""File API router.

REST endpoints over ``FileStorageService``: upload, ranged download,
append, truncate, listing and deletion of stored files.
"""

from __future__ import annotations

from typing import BinaryIO, Iterator

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import StreamingResponse

from filestore.api.v1.deps import get_file_storage, require_admin_key
from filestore.api.v1.schemas.files import (
    FileBatchDelete,
    FileBatchDeleteOut,
    FileLengthUpdate,
    FileListOut,
    FileMetadataOut,
    FileOut,
)
from filestore.services.errors import (
    FileStorageError,
    InvalidLengthError,
    InvalidOffsetError,
    InvalidRangeError,
    StoredFileNotFoundError,
    UploadAbortedError,
)
from filestore.services.file_storage_service import FileStorageService

router = APIRouter()

DOWNLOAD_CHUNK_SIZE = 64 * 1024
DEFAULT_MEDIA_TYPE = "application/octet-stream"

_ERROR_MAPPING: tuple[tuple[type[FileStorageError], int, str], ...] = (
    (StoredFileNotFoundError, status.HTTP_404_NOT_FOUND, "file_not_found"),
    (InvalidRangeError, status.HTTP_416_RANGE_NOT_SATISFIABLE, "invalid_range"),
    (InvalidOffsetError, status.HTTP_409_CONFLICT, "invalid_offset"),
    (InvalidLengthError, status.HTTP_400_BAD_REQUEST, "invalid_length"),
    (UploadAbortedError, status.HTTP_503_SERVICE_UNAVAILABLE, "upload_aborted"),
)


def _http_error(exc: FileStorageError) -> HTTPException:
    for error_type, status_code, error_code in _ERROR_MAPPING:
        if isinstance(exc, error_type):
            break
    else:
        status_code, error_code = status.HTTP_502_BAD_GATEWAY, "storage_error"
    return HTTPException(
        status_code=status_code,
        detail={"message": str(exc), "error_code": error_code},
    )


def _iter_content(stream: BinaryIO) -> Iterator[bytes]:
    try:
        while True:
            data = stream.read(DOWNLOAD_CHUNK_SIZE)
            if not data:
                break
            yield data
    finally:
        stream.close()


@router.post(
    "/files",
    response_model=FileOut,
    status_code=status.HTTP_201_CREATED,
    summary="Upload file",
    description="Store the uploaded content as a new file with a generated name.",
)
def upload_file(
    file: UploadFile = File(...),
    storage: FileStorageService = Depends(get_file_storage),
) -> FileOut:
    try:
        name = storage.save_new_file(file.file)
        return FileOut(name=name, size=storage.get_file_size(name))
    except FileStorageError as exc:
        raise _http_error(exc) from exc


@router.get(
    "/files",
    response_model=FileListOut,
    summary="List files",
)
def list_files(storage: FileStorageService = Depends(get_file_storage)) -> FileListOut:
    try:
        names = storage.get_file_list()
    except FileStorageError as exc:
        raise _http_error(exc) from exc
    return FileListOut(items=names, total=len(names))


@router.get(
    "/files/{name}",
    summary="Download file",
    description=(
        "Stream the file content. With `offset`, only `length` bytes starting "
        "there are returned; a negative or missing `length` reads to the end."
    ),
    response_class=StreamingResponse,
)
def download_file(
    name: str,
    offset: int | None = Query(default=None),
    length: int = Query(default=-1),
    storage: FileStorageService = Depends(get_file_storage),
) -> StreamingResponse:
    try:
        media_type = storage.get_mime_type(name) or DEFAULT_MEDIA_TYPE
        stream = storage.get_file(name, offset, length)
    except FileStorageError as exc:
        raise _http_error(exc) from exc
    return StreamingResponse(_iter_content(stream), media_type=media_type)


@router.get(
    "/files/{name}/metadata",
    response_model=FileMetadataOut,
    summary="Get file metadata",
)
def get_file_metadata(
    name: str,
    storage: FileStorageService = Depends(get_file_storage),
) -> FileMetadataOut:
    try:
        return FileMetadataOut(
            name=name,
            size=storage.get_file_size(name),
            content_type=storage.get_mime_type(name),
        )
    except FileStorageError as exc:
        raise _http_error(exc) from exc


@router.post(
    "/files/{name}/append",
    response_model=FileOut,
    summary="Append to file",
    description="Append the uploaded content; `offset` must equal the current size.",
)
def append_file(
    name: str,
    offset: int = Query(...),
    file: UploadFile = File(...),
    storage: FileStorageService = Depends(get_file_storage),
) -> FileOut:
    try:
        size = storage.append_to_file(file.file, name, offset)
    except FileStorageError as exc:
        raise _http_error(exc) from exc
    return FileOut(name=name, size=size)


@router.put(
    "/files/{name}/length",
    response_model=FileOut,
    summary="Truncate file",
)
def set_file_length(
    name: str,
    payload: FileLengthUpdate,
    storage: FileStorageService = Depends(get_file_storage),
) -> FileOut:
    try:
        storage.set_file_length(payload.length, name)
    except FileStorageError as exc:
        raise _http_error(exc) from exc
    return FileOut(name=name, size=payload.length)


@router.delete(
    "/files/{name}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete file",
)
def delete_file(
    name: str,
    storage: FileStorageService = Depends(get_file_storage),
) -> None:
    try:
        storage.delete_file(name)
    except FileStorageError as exc:
        raise _http_error(exc) from exc


@router.post(
    "/files/batch-delete",
    response_model=FileBatchDeleteOut,
    summary="Delete files",
    description="Delete many files; names the store refused to delete are returned.",
)
def delete_files(
    payload: FileBatchDelete,
    storage: FileStorageService = Depends(get_file_storage),
) -> FileBatchDeleteOut:
    try:
        not_deleted = storage.delete_files(payload.names)
    except FileStorageError as exc:
        raise _http_error(exc) from exc
    return FileBatchDeleteOut(
        requested=len(payload.names), not_deleted=sorted(not_deleted)
    )


@router.delete(
    "/files",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove all files",
    dependencies=[Depends(require_admin_key)],
)
def remove_all_files(storage: FileStorageService = Depends(get_file_storage)) -> None:
    try:
        storage.remove()
    except FileStorageError as exc:
        raise _http_error(exc) from exc
