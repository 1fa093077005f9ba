"""Content-addressed statement ingestion.

Files are identified by the sha256 of their bytes. The duplicate check runs
before anything is written to storage, and the storage key is derived from
the hash, so writing the same content twice is harmless.
"""

from __future__ import annotations

import hashlib
import io
import re
import zipfile
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from uuid import UUID

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from statement_ledger.config import settings
from statement_ledger.logger import get_logger
from statement_ledger.models import Statement, StatementStatus
from statement_ledger.services.storage import Storage, StorageError, get_storage

logger = get_logger(__name__)

ARCHIVE_EXTENSIONS = ("zip",)
CONTENT_TYPES = {
    "pdf": "application/pdf",
    "txt": "text/plain",
}
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9.-]")


class IngestionError(Exception):
    """Raised when a file cannot be turned into a statement."""


class DuplicateContentError(IngestionError):
    """The owner already has a statement with byte-identical content."""

    def __init__(self, file_name: str, existing_statement_id: UUID) -> None:
        super().__init__(f"Duplicate file: {file_name} has already been uploaded")
        self.file_name = file_name
        self.existing_statement_id = existing_statement_id


class UnsupportedTypeError(IngestionError):
    """File type is not on the allow-list."""


class SizeLimitError(IngestionError):
    """File or batch exceeds the configured size ceiling."""


@dataclass
class UploadedFile:
    file_name: str
    content: bytes

    @property
    def extension(self) -> str:
        return file_extension(self.file_name)


@dataclass
class FileFailure:
    file_name: str
    error: str


@dataclass
class DuplicateFile:
    file_name: str
    existing_statement_id: UUID


@dataclass
class IngestReport:
    imported: list[Statement] = field(default_factory=list)
    duplicates: list[DuplicateFile] = field(default_factory=list)
    errors: list[FileFailure] = field(default_factory=list)


def file_extension(file_name: str) -> str:
    suffix = PurePosixPath(file_name).suffix
    return suffix[1:].lower() if suffix else ""


def compute_file_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def sanitize_filename(file_name: str) -> str:
    """Strip any directory part and replace characters outside [a-zA-Z0-9.-]."""
    base = PurePosixPath(file_name.replace("\\", "/")).name or "unknown"
    return _UNSAFE_FILENAME_CHARS.sub("_", base)


def build_storage_key(owner_id: UUID, file_hash: str, file_name: str) -> str:
    ext = file_extension(file_name)
    return f"statements/{owner_id}/{file_hash}.{ext}" if ext else f"statements/{owner_id}/{file_hash}"


def _unsupported(file_name: str) -> UnsupportedTypeError:
    allowed = ", ".join(ext.upper() for ext in [*settings.allowed_statement_extensions, *ARCHIVE_EXTENSIONS])
    return UnsupportedTypeError(f"Unsupported file type for {file_name}: only {allowed} files are accepted")


def _is_skipped_entry(name: str) -> bool:
    path = PurePosixPath(name)
    if "__MACOSX" in path.parts:
        return True
    return path.name.startswith(".") or not path.name


def expand_archive(archive: UploadedFile) -> tuple[list[UploadedFile], list[FileFailure]]:
    """Unpack a zip bundle into the statement files it contains.

    Directories, hidden entries, macOS resource forks and files that are not
    on the statement allow-list are skipped silently. Entries over the
    per-file limit are reported as failures without being decompressed.
    """
    try:
        bundle = zipfile.ZipFile(io.BytesIO(archive.content))
    except zipfile.BadZipFile as exc:
        raise UnsupportedTypeError(f"{archive.file_name} is not a valid zip archive") from exc

    files: list[UploadedFile] = []
    failures: list[FileFailure] = []
    with bundle:
        for info in bundle.infolist():
            if info.is_dir() or _is_skipped_entry(info.filename):
                continue
            name = PurePosixPath(info.filename).name
            if file_extension(name) not in settings.allowed_statement_extensions:
                continue
            if info.file_size > settings.max_upload_bytes:
                failures.append(FileFailure(name, _size_message(name, settings.max_upload_bytes)))
                continue
            files.append(UploadedFile(file_name=name, content=bundle.read(info)))

    if not files and not failures:
        raise IngestionError(f"No statement files found in {archive.file_name}")
    return files, failures


def _size_message(file_name: str, limit: int) -> str:
    return f"{file_name} exceeds the {limit // (1024 * 1024)}MB limit"


class StatementIngestor:
    """Turns uploaded files into pending statements for one request."""

    def __init__(self, db: AsyncSession, storage: Storage | None = None) -> None:
        self.db = db
        self.storage = storage or get_storage()

    async def find_duplicate(self, owner_id: UUID, file_hash: str) -> UUID | None:
        result = await self.db.execute(
            select(Statement.id).where(Statement.user_id == owner_id).where(Statement.file_hash == file_hash)
        )
        return result.scalar_one_or_none()

    async def ingest(self, owner_id: UUID, upload: UploadedFile) -> Statement:
        """Validate, deduplicate, store and record a single statement file."""
        file_name = sanitize_filename(upload.file_name)
        if upload.extension not in settings.allowed_statement_extensions:
            raise _unsupported(file_name)
        if len(upload.content) > settings.max_upload_bytes:
            raise SizeLimitError(_size_message(file_name, settings.max_upload_bytes))
        if not upload.content:
            raise IngestionError(f"{file_name} is empty")

        file_hash = compute_file_hash(upload.content)
        existing_id = await self.find_duplicate(owner_id, file_hash)
        if existing_id is not None:
            raise DuplicateContentError(file_name, existing_id)

        storage_key = build_storage_key(owner_id, file_hash, file_name)
        await run_in_threadpool(
            self.storage.upload_bytes,
            key=storage_key,
            content=upload.content,
            content_type=CONTENT_TYPES.get(upload.extension),
        )

        statement = Statement(
            user_id=owner_id,
            file_path=storage_key,
            file_hash=file_hash,
            original_filename=file_name,
            file_size=len(upload.content),
            status=StatementStatus.PENDING,
        )
        self.db.add(statement)
        try:
            await self.db.commit()
        except IntegrityError as exc:
            # Lost a race with a concurrent upload of the same bytes; the stored
            # object is shared with the winner and must stay.
            await self.db.rollback()
            existing_id = await self.find_duplicate(owner_id, file_hash)
            if existing_id is None:
                raise
            raise DuplicateContentError(file_name, existing_id) from exc
        except Exception:
            await self.db.rollback()
            try:
                await run_in_threadpool(self.storage.delete_object, storage_key)
            except StorageError as store_exc:
                logger.error("Failed to clean up storage object after DB error", error=str(store_exc))
            raise

        await self.db.refresh(statement)
        logger.info(
            "Statement ingested",
            statement_id=str(statement.id),
            file_name=file_name,
            file_size=statement.file_size,
        )
        return statement

    async def ingest_batch(self, owner_id: UUID, uploads: list[UploadedFile]) -> IngestReport:
        """Ingest many files (zip bundles are expanded), reporting per-file outcomes.

        The batch ceiling is checked up front so an oversized batch writes nothing.
        """
        total_bytes = sum(len(upload.content) for upload in uploads)
        if total_bytes > settings.max_batch_upload_bytes:
            raise SizeLimitError(
                f"Total upload size exceeds the {settings.max_batch_upload_bytes // (1024 * 1024)}MB limit"
            )

        report = IngestReport()
        for upload in uploads:
            if upload.extension in ARCHIVE_EXTENSIONS:
                if len(upload.content) > settings.max_batch_upload_bytes:
                    report.errors.append(FileFailure(upload.file_name, "Archive exceeds the batch size limit"))
                    continue
                try:
                    members, failures = expand_archive(upload)
                except IngestionError as exc:
                    report.errors.append(FileFailure(upload.file_name, str(exc)))
                    continue
                report.errors.extend(failures)
            else:
                members = [upload]

            for member in members:
                await self._ingest_into_report(owner_id, member, report)

        logger.info(
            "Batch ingestion finished",
            imported=len(report.imported),
            duplicates=len(report.duplicates),
            errors=len(report.errors),
        )
        return report

    async def _ingest_into_report(self, owner_id: UUID, upload: UploadedFile, report: IngestReport) -> None:
        try:
            statement = await self.ingest(owner_id, upload)
        except DuplicateContentError as exc:
            report.duplicates.append(DuplicateFile(exc.file_name, exc.existing_statement_id))
        except (IngestionError, StorageError) as exc:
            logger.warning("File rejected during batch ingestion", file_name=upload.file_name, error=str(exc))
            report.errors.append(FileFailure(sanitize_filename(upload.file_name), str(exc)))
        else:
            report.imported.append(statement)
