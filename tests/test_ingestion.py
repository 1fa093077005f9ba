"""Tests for content-addressed statement ingestion."""

import io
import zipfile
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from statement_ledger.config import settings
from statement_ledger.models import Statement, StatementStatus
from statement_ledger.services.ingestion import (
    DuplicateContentError,
    IngestionError,
    SizeLimitError,
    StatementIngestor,
    UnsupportedTypeError,
    UploadedFile,
    build_storage_key,
    compute_file_hash,
    expand_archive,
    sanitize_filename,
)
from statement_ledger.services.storage import StorageError


def make_zip(entries: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as bundle:
        for name, content in entries.items():
            bundle.writestr(name, content)
    return buffer.getvalue()


async def count_statements(db, owner_id) -> int:
    return await db.scalar(select(func.count()).select_from(Statement).where(Statement.user_id == owner_id))


class TestHelpers:
    def test_sanitize_filename_replaces_unsafe_characters(self):
        assert sanitize_filename("Jan 2024 (final).pdf") == "Jan_2024__final_.pdf"

    def test_sanitize_filename_drops_directories(self):
        assert sanitize_filename("../../etc/passwd.txt") == "passwd.txt"
        assert sanitize_filename("C:\\Users\\me\\stmt.pdf") == "stmt.pdf"

    def test_storage_key_is_derived_from_hash(self, owner_id):
        file_hash = compute_file_hash(b"abc")
        assert build_storage_key(owner_id, file_hash, "x.PDF") == f"statements/{owner_id}/{file_hash}.pdf"


class TestIngest:
    async def test_ingest_creates_pending_statement(self, db, storage, owner_id):
        content = b"Maple Bank statement January"
        statement = await StatementIngestor(db, storage).ingest(owner_id, UploadedFile("jan.txt", content))

        assert statement.status == StatementStatus.PENDING
        assert statement.file_hash == compute_file_hash(content)
        assert statement.file_size == len(content)
        assert statement.original_filename == "jan.txt"
        assert storage.get_object(statement.file_path) == content

    async def test_same_bytes_twice_is_duplicate(self, db, storage, owner_id):
        """
        GIVEN a statement already ingested
        WHEN byte-identical content is ingested again under another name
        THEN DuplicateContentError carries the existing id and no second row exists
        """
        ingestor = StatementIngestor(db, storage)
        first = await ingestor.ingest(owner_id, UploadedFile("jan.txt", b"same bytes"))

        with pytest.raises(DuplicateContentError) as exc_info:
            await ingestor.ingest(owner_id, UploadedFile("renamed.txt", b"same bytes"))

        assert exc_info.value.existing_statement_id == first.id
        assert await count_statements(db, owner_id) == 1

    async def test_duplicate_is_checked_before_storage_write(self, db, storage, owner_id):
        ingestor = StatementIngestor(db, storage)
        await ingestor.ingest(owner_id, UploadedFile("jan.txt", b"same bytes"))

        spy = MagicMock(wraps=storage)
        with pytest.raises(DuplicateContentError):
            await StatementIngestor(db, spy).ingest(owner_id, UploadedFile("jan.txt", b"same bytes"))
        spy.upload_bytes.assert_not_called()

    async def test_same_bytes_for_different_owners_are_independent(self, db, storage, owner_id):
        ingestor = StatementIngestor(db, storage)
        await ingestor.ingest(owner_id, UploadedFile("jan.txt", b"shared"))
        other = await ingestor.ingest(uuid4(), UploadedFile("jan.txt", b"shared"))
        assert other.user_id != owner_id

    async def test_unsupported_extension_rejected_before_write(self, db, owner_id):
        spy = MagicMock()
        with pytest.raises(UnsupportedTypeError):
            await StatementIngestor(db, spy).ingest(owner_id, UploadedFile("photo.png", b"\x89PNG"))
        spy.upload_bytes.assert_not_called()
        assert await count_statements(db, owner_id) == 0

    async def test_oversize_file_rejected(self, db, storage, owner_id, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 10)
        with pytest.raises(SizeLimitError):
            await StatementIngestor(db, storage).ingest(owner_id, UploadedFile("big.txt", b"x" * 11))

    async def test_empty_file_rejected(self, db, storage, owner_id):
        with pytest.raises(IngestionError, match="empty"):
            await StatementIngestor(db, storage).ingest(owner_id, UploadedFile("empty.txt", b""))

    async def test_storage_failure_propagates_without_row(self, db, owner_id):
        failing = MagicMock()
        failing.upload_bytes.side_effect = StorageError("bucket unavailable")
        with pytest.raises(StorageError):
            await StatementIngestor(db, failing).ingest(owner_id, UploadedFile("jan.txt", b"content"))
        assert await count_statements(db, owner_id) == 0


class TestArchives:
    def test_expand_archive_skips_noise(self):
        archive = UploadedFile(
            "bundle.zip",
            make_zip(
                {
                    "jan.txt": b"january",
                    "nested/feb.pdf": b"%PDF-1.4 february",
                    "__MACOSX/._jan.txt": b"resource fork",
                    ".DS_Store": b"junk",
                    "notes.docx": b"not a statement",
                }
            ),
        )
        files, failures = expand_archive(archive)

        assert sorted(f.file_name for f in files) == ["feb.pdf", "jan.txt"]
        assert failures == []

    def test_archive_without_statements_fails(self):
        with pytest.raises(IngestionError, match="No statement files found"):
            expand_archive(UploadedFile("empty.zip", make_zip({"readme.md": b"hello"})))

    def test_corrupt_archive_is_unsupported(self):
        with pytest.raises(UnsupportedTypeError):
            expand_archive(UploadedFile("broken.zip", b"PK not really"))

    def test_oversize_entry_reported_as_failure(self, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 5)
        files, failures = expand_archive(UploadedFile("b.zip", make_zip({"big.txt": b"0123456789", "ok.txt": b"abc"})))
        assert [f.file_name for f in files] == ["ok.txt"]
        assert [f.file_name for f in failures] == ["big.txt"]


class TestBatch:
    async def test_batch_reports_each_outcome(self, db, storage, owner_id):
        ingestor = StatementIngestor(db, storage)
        await ingestor.ingest(owner_id, UploadedFile("old.txt", b"already here"))

        report = await ingestor.ingest_batch(
            owner_id,
            [
                UploadedFile("new.txt", b"brand new"),
                UploadedFile("copy.txt", b"already here"),
                UploadedFile("image.png", b"\x89PNG"),
                UploadedFile("bundle.zip", make_zip({"a.txt": b"from zip a", "b.txt": b"from zip b"})),
            ],
        )

        assert sorted(s.original_filename for s in report.imported) == ["a.txt", "b.txt", "new.txt"]
        assert [d.file_name for d in report.duplicates] == ["copy.txt"]
        assert [e.file_name for e in report.errors] == ["image.png"]
        assert await count_statements(db, owner_id) == 4

    async def test_batch_over_total_limit_writes_nothing(self, db, storage, owner_id, monkeypatch):
        monkeypatch.setattr(settings, "max_batch_upload_bytes", 8)
        with pytest.raises(SizeLimitError):
            await StatementIngestor(db, storage).ingest_batch(
                owner_id, [UploadedFile("a.txt", b"12345"), UploadedFile("b.txt", b"67890")]
            )
        assert await count_statements(db, owner_id) == 0
