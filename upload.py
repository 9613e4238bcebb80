"""
Upload gate

Accepts a single image under the `image` form field, stores it on local disk
or on an FTP server and hands the stored file name to the route.
"""
import io
import os
from contextlib import contextmanager
from ftplib import FTP, Error as FTPError
from typing import Optional
from uuid import uuid4

from fastapi import File, HTTPException, Request, UploadFile
from starlette.concurrency import run_in_threadpool

import config
from logger import log_error, log_event

BAD_CONTENT_TYPE = "資料格式不正確"


def require_multipart(request: Request):
    if "multipart/form-data" not in request.headers.get("content-type", ""):
        raise HTTPException(status_code=400, detail=BAD_CONTENT_TYPE)


def require_json(request: Request):
    if "application/json" not in request.headers.get("content-type", ""):
        raise HTTPException(status_code=400, detail=BAD_CONTENT_TYPE)


def _store_local(filename: str, data: bytes):
    os.makedirs(config.UPLOAD_DIR, exist_ok=True)
    with open(os.path.join(config.UPLOAD_DIR, filename), "wb") as f:
        f.write(data)


def _store_ftp(filename: str, data: bytes):
    with FTP(config.FTP_HOST) as ftp:
        ftp.login(config.FTP_USER, config.FTP_PASS)
        ftp.storbinary(f"STOR /{filename}", io.BytesIO(data))


async def image_upload(image: Optional[UploadFile] = File(None)) -> Optional[str]:
    if image is None or not image.filename:
        return None
    if not (image.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="格式不符")

    data = await image.read(config.MAX_UPLOAD_SIZE + 1)
    if len(data) > config.MAX_UPLOAD_SIZE:
        raise HTTPException(status_code=400, detail="檔案太大")

    filename = uuid4().hex + os.path.splitext(image.filename)[1].lower()
    store = _store_ftp if config.FTP else _store_local
    await run_in_threadpool(store, filename, data)
    log_event(f"Stored upload {filename} ({len(data)} bytes)")
    return filename


def discard_upload(filename: str):
    try:
        if config.FTP:
            with FTP(config.FTP_HOST) as ftp:
                ftp.login(config.FTP_USER, config.FTP_PASS)
                ftp.delete(f"/{filename}")
        else:
            os.remove(os.path.join(config.UPLOAD_DIR, filename))
    except (OSError, FTPError) as e:
        log_error(f"Unable to remove upload {filename}", e)
    else:
        log_event(f"Removed unused upload {filename}")


@contextmanager
def discard_on_error(filename: Optional[str]):
    """Remove the stored upload if the route fails after it was saved"""
    try:
        yield
    except Exception:
        if filename:
            discard_upload(filename)
        raise
