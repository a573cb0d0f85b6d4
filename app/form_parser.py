from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO, Optional

from pydantic import ValidationError
from starlette.datastructures import FormData, UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException
from starlette.requests import Request

from app.blob_store import BlobStore
from app.config import settings
from app.enums import FileModeEnum
from app.errors import BlobUploadError, DecodeError
from app.reconciliation import UploadedFile
from app.schemas import ProductSubmission

logger = logging.getLogger(__name__)

PRODUCT_DATA_FIELD = "productData"
COMMON_FILE_FIELD = "file"
_VARIANT_FILE_FIELD_RE = re.compile(r"^variantFiles\[(.+)\]$")


@dataclass
class FormFile:
    field_name: str
    filename: str | None
    content_type: str | None
    size: int
    stream: BinaryIO


@dataclass
class ParsedForm:
    fields: dict[str, list[str]] = field(default_factory=dict)
    files: dict[str, list[FormFile]] = field(default_factory=dict)


@dataclass
class UploadBatch:
    common_file: UploadedFile | None = None
    variant_files: dict[str, UploadedFile] = field(default_factory=dict)
    failures: list[BlobUploadError] = field(default_factory=list)

    @property
    def uploaded_count(self) -> int:
        return int(self.common_file is not None) + len(self.variant_files)


def get_field(fields: dict[str, list[str]], key: str) -> str | None:
    values = fields.get(key) or []
    return values[0] if values else None


def variant_id_for_field(field_name: str) -> str | None:
    match = _VARIANT_FILE_FIELD_RE.match(field_name)
    return match.group(1) if match else None


async def read_form(request: Request) -> FormData:
    try:
        return await request.form(
            max_files=settings.UPLOAD_MAX_FILES,
            max_fields=settings.UPLOAD_MAX_FIELDS,
        )
    except (MultiPartException, StarletteHTTPException) as exc:
        detail = getattr(exc, "message", None) or getattr(exc, "detail", None) or str(exc)
        raise DecodeError(f"Malformed multipart form: {detail}") from exc


def _measure(upload: UploadFile) -> int:
    if upload.size is not None:
        return int(upload.size)
    stream = upload.file
    position = stream.tell()
    stream.seek(0, 2)
    size = stream.tell()
    stream.seek(position)
    return size


def split_form(form: FormData) -> ParsedForm:
    parsed = ParsedForm()
    for name, value in form.multi_items():
        if isinstance(value, UploadFile):
            size = _measure(value)
            if not value.filename and size == 0:
                continue
            if size > settings.UPLOAD_MAX_FILE_BYTES:
                raise DecodeError(
                    f"File {value.filename or name} exceeds {settings.UPLOAD_MAX_FILE_BYTES} bytes."
                )
            value.file.seek(0)
            parsed.files.setdefault(name, []).append(
                FormFile(
                    field_name=name,
                    filename=value.filename,
                    content_type=value.content_type,
                    size=size,
                    stream=value.file,
                )
            )
        else:
            parsed.fields.setdefault(name, []).append(value)
    return parsed


def parse_product_submission(fields: dict[str, list[str]]) -> ProductSubmission:
    raw = get_field(fields, PRODUCT_DATA_FIELD)
    if not raw:
        raise DecodeError(
            "Missing productData field. Ensure frontend appends JSON-stringified productData to FormData."
        )
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"productData is not valid JSON: {exc.msg}") from exc
    if not isinstance(payload, dict):
        raise DecodeError("productData must be a JSON object")
    try:
        return ProductSubmission.model_validate(payload)
    except ValidationError as exc:
        messages = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        )
        raise DecodeError(f"Invalid productData: {messages}") from exc


def _upload_target(field_name: str) -> tuple[FileModeEnum, str | None] | None:
    if field_name == COMMON_FILE_FIELD:
        return FileModeEnum.common, None
    variant_id = variant_id_for_field(field_name)
    if variant_id is not None:
        return FileModeEnum.variant, variant_id
    return None


async def upload_form_files(
    parsed: ParsedForm,
    *,
    product_id: str,
    store: BlobStore,
    concurrency: int,
    now: Optional[datetime] = None,
) -> UploadBatch:
    """Push every attached file to the blob store and keep the first upload per target.

    Uploads run concurrently and are all joined before returning. A failed upload is
    recorded in ``failures`` and the affected target simply has no new file.
    """
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _upload(form_file: FormFile, target_kind: FileModeEnum, variant_id: str | None):
        async with semaphore:
            try:
                return await asyncio.to_thread(
                    store.put,
                    field_name=form_file.field_name,
                    target_kind=target_kind,
                    variant_id=variant_id,
                    stream=form_file.stream,
                    filename=form_file.filename,
                    content_type=form_file.content_type,
                    size=form_file.size,
                    product_id=product_id,
                    now=now,
                )
            except BlobUploadError as exc:
                logger.warning(
                    "form_parser.upload_failed",
                    extra={"field": form_file.field_name, "filename": form_file.filename, "error": str(exc)},
                )
                return exc

    jobs = []
    for field_name, form_files in parsed.files.items():
        target = _upload_target(field_name)
        if target is None:
            logger.info("form_parser.ignored_file_field", extra={"field": field_name})
            continue
        target_kind, variant_id = target
        jobs.extend(_upload(form_file, target_kind, variant_id) for form_file in form_files)

    batch = UploadBatch()
    for result in await asyncio.gather(*jobs):
        if isinstance(result, BlobUploadError):
            batch.failures.append(result)
        elif result.target_kind == FileModeEnum.common:
            if batch.common_file is None:
                batch.common_file = result
        elif result.variant_id is not None:
            batch.variant_files.setdefault(result.variant_id, result)
    return batch
