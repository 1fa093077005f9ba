"""HTTP API tests through the ASGI app."""

import io
import json
import zipfile
from datetime import date
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import select

from statement_ledger.config import settings
from statement_ledger.models import JobStatus, StatementStatus, SyncConnection, SyncConnectionStatus
from statement_ledger.services.plaid import ProviderTransaction, SyncPage
from statement_ledger.services.workers import wait_for_background_tasks
from tests.factories import (
    FAIL_MARKER,
    ProvisionalTransactionFactory,
    StatementFactory,
    SyncConnectionFactory,
    TransactionFactory,
    create_job_with_items,
    create_stored_statement,
)


def text_file(name: str, body: str) -> tuple[str, tuple[str, bytes, str]]:
    return ("files", (name, body.encode(), "text/plain"))


def zip_bytes(entries: dict[str, bytes]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as bundle:
        for name, content in entries.items():
            bundle.writestr(name, content)
    return buffer.getvalue()


class TestHealthAndAuth:
    async def test_health(self, public_client):
        response = await public_client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"] == {"database": True}

    async def test_request_id_is_echoed(self, public_client):
        response = await public_client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    async def test_statements_require_token(self, public_client):
        response = await public_client.get("/statements")
        assert response.status_code == 401

    async def test_invalid_token_rejected(self, public_client):
        response = await public_client.get("/statements", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401


class TestStatementUpload:
    async def test_upload_then_duplicate(self, client):
        files = {"file": ("jan.txt", b"Maple Bank January", "text/plain")}

        first = await client.post("/statements/upload", files=files)
        assert first.status_code == 201
        body = first.json()
        assert body["status"] == "pending"
        assert body["original_filename"] == "jan.txt"

        renamed = {"file": ("copy of jan.txt", b"Maple Bank January", "text/plain")}
        second = await client.post("/statements/upload", files=renamed)
        assert second.status_code == 409
        assert second.json()["detail"]["existing_statement_id"] == body["id"]

        listing = await client.get("/statements")
        assert listing.json()["total"] == 1

    async def test_unsupported_type(self, client):
        response = await client.post("/statements/upload", files={"file": ("pic.png", b"\x89PNG", "image/png")})
        assert response.status_code == 400
        assert "Unsupported file type" in response.json()["detail"]

    async def test_zip_requires_bulk_endpoint(self, client):
        archive = zip_bytes({"a.txt": b"a"})
        response = await client.post("/statements/upload", files={"file": ("b.zip", archive, "application/zip")})
        assert response.status_code == 400

    async def test_oversize_file(self, client, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 4)
        response = await client.post("/statements/upload", files={"file": ("big.txt", b"12345", "text/plain")})
        assert response.status_code == 413

    async def test_bulk_upload_reports_outcomes(self, client):
        await client.post("/statements/upload", files={"file": ("old.txt", b"seen before", "text/plain")})

        response = await client.post(
            "/statements/upload/bulk",
            files=[
                text_file("new.txt", "fresh"),
                text_file("again.txt", "seen before"),
                ("files", ("bundle.zip", zip_bytes({"z1.txt": b"one", "z2.txt": b"two"}), "application/zip")),
                ("files", ("notes.docx", b"nope", "application/octet-stream")),
            ],
        )

        assert response.status_code == 200
        body = response.json()
        assert body["total_imported"] == 3
        assert body["total_duplicates"] == 1
        assert body["total_errors"] == 1
        assert body["job_ids"] == []

    async def test_bulk_upload_with_processing(self, client):
        """
        GIVEN two new statements, one of which cannot be extracted
        WHEN they are bulk uploaded with process=true
        THEN a job runs both and completes with one failure
        """
        response = await client.post(
            "/statements/upload/bulk",
            files=[text_file("good.txt", "chequing january"), text_file("bad.txt", f"scan {FAIL_MARKER}")],
            data={"process": "true"},
        )
        assert response.status_code == 200
        [job_id] = response.json()["job_ids"]

        await wait_for_background_tasks()

        job = (await client.get(f"/jobs/{job_id}")).json()
        assert job["status"] == "completed"
        assert job["error"] == "1 of 2 files failed"
        assert job["progress"] == 100
        assert job["label"] == "Processing statements"
        assert [item["file_name"] for item in job["items"]] == ["good.txt", "bad.txt"]

    async def test_bulk_processing_splits_large_imports_into_jobs(self, client, monkeypatch):
        """
        GIVEN a job size limit of two statements
        WHEN three statements are bulk uploaded with process=true
        THEN two jobs cover all three and every statement is processed
        """
        monkeypatch.setattr(settings, "max_batch_items", 2)
        response = await client.post(
            "/statements/upload/bulk",
            files=[text_file(f"month-{n}.txt", f"chequing month {n}") for n in range(3)],
            data={"process": "true"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["total_imported"] == 3
        assert len(body["job_ids"]) == 2

        await wait_for_background_tasks()

        jobs = [(await client.get(f"/jobs/{job_id}")).json() for job_id in body["job_ids"]]
        assert [job["total_items"] for job in jobs] == [2, 1]
        assert all(job["status"] == "completed" for job in jobs)
        statements = (await client.get("/statements")).json()["items"]
        assert sorted(s["status"] for s in statements) == ["done", "done", "done"]


class TestStatementDetail:
    async def test_detail_and_transactions(self, client, db, storage, owner_id, processor):
        statement = await create_stored_statement(db, storage, owner_id)
        await processor.process(statement.id, owner_id)

        detail = await client.get(f"/statements/{statement.id}")
        assert detail.status_code == 200
        body = detail.json()
        assert body["status"] == "done"
        assert body["verification_status"] == "verified"
        assert body["verification"]["is_balanced"] is True

        rows = (await client.get(f"/statements/{statement.id}/transactions")).json()
        assert rows["total"] == 4
        assert [r["sort_order"] for r in rows["items"]] == [0, 1, 2, 3]

    async def test_other_owner_gets_404(self, client, db):
        statement = await StatementFactory.create_async(db, user_id=uuid4())
        assert (await client.get(f"/statements/{statement.id}")).status_code == 404
        assert (await client.get(f"/statements/{statement.id}/transactions")).status_code == 404

    async def test_reprocess(self, client, db, storage, owner_id):
        statement = await create_stored_statement(db, storage, owner_id)

        response = await client.post(f"/statements/{statement.id}/reprocess")

        assert response.status_code == 200
        assert response.json() == {
            "id": str(statement.id),
            "success": True,
            "transaction_count": 4,
            "is_balanced": True,
            "error": None,
        }

    async def test_reprocess_busy_statement(self, client, db, owner_id):
        statement = await StatementFactory.create_async(db, user_id=owner_id, status=StatementStatus.PROCESSING)
        response = await client.post(f"/statements/{statement.id}/reprocess")
        assert response.status_code == 409

    async def test_reprocess_failure_is_reported(self, client, db, storage, owner_id):
        statement = await create_stored_statement(db, storage, owner_id, text=FAIL_MARKER)

        body = (await client.post(f"/statements/{statement.id}/reprocess")).json()

        assert body["success"] is False
        assert "period dates" in body["error"]

    async def test_reprocess_unknown(self, client):
        assert (await client.post(f"/statements/{uuid4()}/reprocess")).status_code == 404

    async def test_batch_reprocess(self, client, db, storage, owner_id):
        statement = await create_stored_statement(db, storage, owner_id)

        response = await client.post("/statements/reprocess", json={"statement_ids": [str(statement.id), str(uuid4())]})

        body = response.json()
        assert (body["processed"], body["failed"]) == (1, 1)
        assert body["results"][1]["error"] == "Statement not found"

    async def test_human_verify(self, client, db, owner_id):
        statement = await StatementFactory.create_async(db, user_id=owner_id, status=StatementStatus.DONE)
        response = await client.post(f"/statements/{statement.id}/verify")
        assert response.json()["verification_status"] == "human_verified"


class TestJobs:
    async def test_create_and_run_job(self, client, db, storage, owner_id):
        statement = await create_stored_statement(db, storage, owner_id)

        response = await client.post("/jobs", json={"statement_ids": [str(statement.id)]})
        assert response.status_code == 202
        assert response.json()["total_items"] == 1

        await wait_for_background_tasks()
        job = (await client.get(f"/jobs/{response.json()['job_id']}")).json()
        assert job["status"] == "completed"
        assert job["items"][0]["status"] == "completed"

    async def test_create_job_validation(self, client):
        unknown = await client.post("/jobs", json={"statement_ids": [str(uuid4())]})
        assert unknown.status_code == 400
        assert "Statements not found" in unknown.json()["detail"]

        empty = await client.post("/jobs", json={"statement_ids": []})
        assert empty.status_code == 422

    async def test_list_jobs_paginates(self, client, db, owner_id):
        created = [
            await create_job_with_items(db, owner_id, job_status=JobStatus.COMPLETED, item_statuses=[JobStatus.COMPLETED])
            for _ in range(3)
        ]

        first = (await client.get("/jobs", params={"limit": 2})).json()
        assert len(first["items"]) == 2
        assert first["next_cursor"] is not None

        second = (await client.get("/jobs", params={"limit": 2, "cursor": first["next_cursor"]})).json()
        assert len(second["items"]) == 1
        assert second["next_cursor"] is None

        seen = {job["id"] for job in first["items"] + second["items"]}
        assert seen == {str(job.id) for job in created}

    async def test_list_jobs_invalid_cursor(self, client):
        response = await client.get("/jobs", params={"cursor": str(uuid4())})
        assert response.status_code == 400

    async def test_active_and_reset(self, client, db, owner_id):
        job = await create_job_with_items(db, owner_id)
        await StatementFactory.create_async(db, user_id=owner_id, status=StatementStatus.PROCESSING)

        active = (await client.get("/jobs/active")).json()
        assert [j["id"] for j in active] == [str(job.id)]

        reset = await client.post("/jobs/reset-interrupted")
        assert reset.json() == {"statements": 1, "jobs": 1, "items": 2}

        assert (await client.get("/jobs/active")).json() == []
        detail = (await client.get(f"/jobs/{job.id}")).json()
        assert detail["status"] == "failed"
        assert detail["error"].startswith("Interrupted")

    async def test_stream_finished_job(self, client, db, owner_id):
        job = await create_job_with_items(
            db, owner_id, job_status=JobStatus.COMPLETED, item_statuses=[JobStatus.COMPLETED]
        )

        response = await client.get(f"/jobs/{job.id}/stream")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        frames = [line[len("data: ") :] for line in response.text.split("\n\n") if line.startswith("data: ")]
        events = [json.loads(frame) for frame in frames]
        assert [e["type"] for e in events] == ["progress", "done"]

    async def test_stream_unknown_job(self, client):
        assert (await client.get(f"/jobs/{uuid4()}/stream")).status_code == 404


class TestSync:
    async def test_connection_lifecycle(self, client, db, owner_id):
        payload = {"item_id": "item-abc", "access_token": "access-sandbox-1", "institution_name": "Maple Bank"}

        created = await client.post("/sync/connections", json=payload)
        assert created.status_code == 201
        body = created.json()
        assert "access_token" not in body
        assert body["status"] == "active"

        duplicate = await client.post("/sync/connections", json=payload)
        assert duplicate.status_code == 409

        listing = (await client.get("/sync/connections")).json()
        assert listing["total"] == 1

        deleted = await client.delete(f"/sync/connections/{body['id']}")
        assert deleted.status_code == 204
        assert (await client.get(f"/sync/connections/{body['id']}")).status_code == 404

    async def test_manual_sync_runs_as_job(self, client, db, owner_id, fake_provider):
        connection = await SyncConnectionFactory.create_async(db, user_id=owner_id)
        fake_provider.pages = [
            SyncPage(
                added=[
                    ProviderTransaction(
                        transaction_id="t1", txn_date=date(2024, 3, 2), amount=Decimal("12.34"), name="Parking"
                    )
                ],
                next_cursor="c1",
            )
        ]

        response = await client.post(f"/sync/connections/{connection.id}/sync")
        assert response.status_code == 202
        await wait_for_background_tasks()

        job = (await client.get(f"/jobs/{response.json()['job_id']}")).json()
        assert job["job_type"] == "bank_sync"
        assert job["status"] == "completed"

        rows = (await client.get("/transactions", params={"source": "sync"})).json()
        assert [(r["external_id"], r["amount"]) for r in rows["items"]] == [("t1", "-12.34")]

    async def test_sync_failure_fails_job(self, client, db, owner_id, fake_provider):
        connection = await SyncConnectionFactory.create_async(db, user_id=owner_id)
        fake_provider.fail_at = 0

        response = await client.post(f"/sync/connections/{connection.id}/sync")
        await wait_for_background_tasks()

        job = (await client.get(f"/jobs/{response.json()['job_id']}")).json()
        assert job["status"] == "failed"
        assert job["error"] == "1 of 1 connections failed"
        conn = (await client.get(f"/sync/connections/{connection.id}")).json()
        assert conn["status"] == "error"

    async def test_webhook_triggers_sync(self, client, db, owner_id):
        connection = await SyncConnectionFactory.create_async(db, user_id=owner_id, item_id="item-hook")

        response = await client.post(
            "/sync/webhook",
            json={"webhook_type": "TRANSACTIONS", "webhook_code": "SYNC_UPDATES_AVAILABLE", "item_id": "item-hook"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["received"] is True
        assert body["job_id"] is not None
        await wait_for_background_tasks()
        await db.refresh(connection)
        assert connection.last_synced_at is not None

    async def test_webhook_item_error(self, client, db, owner_id):
        await SyncConnectionFactory.create_async(db, user_id=owner_id, item_id="item-broken")

        await client.post(
            "/sync/webhook",
            json={
                "webhook_type": "ITEM",
                "webhook_code": "ERROR",
                "item_id": "item-broken",
                "error": {"error_code": "ITEM_LOGIN_REQUIRED", "error_message": "login required"},
            },
        )

        connection = await db.scalar(
            select(SyncConnection)
            .where(SyncConnection.item_id == "item-broken")
            .execution_options(populate_existing=True)
        )
        assert connection.status == SyncConnectionStatus.ERROR
        assert connection.error_message == "login required"

    async def test_webhook_unknown_item_and_missing_id(self, public_client):
        unknown = await public_client.post(
            "/sync/webhook", json={"webhook_type": "TRANSACTIONS", "webhook_code": "DEFAULT_UPDATE", "item_id": "x"}
        )
        assert unknown.json() == {"received": True, "job_id": None}

        missing = await public_client.post("/sync/webhook", json={"webhook_type": "TRANSACTIONS"})
        assert missing.status_code == 400


class TestTransactions:
    async def test_filters_and_order(self, client, db, owner_id):
        await TransactionFactory.create_async(db, user_id=owner_id, txn_date=date(2024, 1, 9), description="later")
        await TransactionFactory.create_async(db, user_id=owner_id, txn_date=date(2024, 1, 2), description="earlier")
        await ProvisionalTransactionFactory.create_async(
            db, user_id=owner_id, txn_date=date(2024, 1, 5), description="pending"
        )
        await TransactionFactory.create_async(db, user_id=uuid4(), txn_date=date(2024, 1, 3), description="foreign")

        everything = (await client.get("/transactions")).json()
        assert [r["description"] for r in everything["items"]] == ["earlier", "pending", "later"]

        provisional = (await client.get("/transactions", params={"provisional": "true"})).json()
        assert [r["description"] for r in provisional["items"]] == ["pending"]

        windowed = (await client.get("/transactions", params={"start": "2024-01-04", "end": "2024-01-31"})).json()
        assert [r["description"] for r in windowed["items"]] == ["pending", "later"]

    async def test_reversed_range(self, client):
        response = await client.get("/transactions", params={"start": "2024-02-01", "end": "2024-01-01"})
        assert response.status_code == 400
