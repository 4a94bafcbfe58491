"""IPFS recovery — gateway fallback, legacy payload shapes, recovery pipeline."""

from __future__ import annotations

import base64
import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import select

from notice_vault.models.encrypted_document import EncryptedDocument
from notice_vault.models.notice import NoticeComponent, ServedNotice
from notice_vault.services import crypto
from notice_vault.services.errors import AllGatewaysExhaustedError
from notice_vault.services.ipfs import IpfsGatewayClient
from notice_vault.services.legacy_payload import PayloadShape, decode_data_url, parse_legacy_payload
from notice_vault.services.recovery import IpfsRecoveryPipeline, PendingNotice
from wallets import RECIPIENT, SERVER

GATEWAYS = ["https://gw1.test/ipfs/", "https://gw2.test/ipfs", "https://gw3.test/ipfs/"]
PASSPHRASE = "legacy-notice-passphrase"
T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

PNG = b"\x89PNG\r\n\x1a\nthumbnail-bytes"
PDF = b"%PDF-1.4 full document"


def data_url(mime: str, data: bytes) -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode()}"


def gateway_client(routes: dict, calls: list | None = None, **kwargs) -> IpfsGatewayClient:
    """Gateway client whose HTTP layer answers from *routes* ({url: response})."""

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if calls is not None:
            calls.append(url)
        answer = routes.get(url, httpx.Response(404))
        if isinstance(answer, Exception):
            raise answer
        return answer

    client = httpx.Client(transport=httpx.MockTransport(handler))
    return IpfsGatewayClient(GATEWAYS, timeout=1.0, client=client, **kwargs)


# ---------------------------------------------------------------------------
# Gateway client
# ---------------------------------------------------------------------------


class TestGatewayClient:
    def test_first_gateway_answers(self):
        calls = []
        client = gateway_client({"https://gw1.test/ipfs/QmA": httpx.Response(200, content=b"one")}, calls)
        assert client.download("QmA") == b"one"
        assert calls == ["https://gw1.test/ipfs/QmA"]

    def test_404_then_200_returns_second_payload(self):
        calls = []
        client = gateway_client(
            {
                "https://gw1.test/ipfs/QmA": httpx.Response(404),
                "https://gw2.test/ipfs/QmA": httpx.Response(200, content=b"second"),
            },
            calls,
        )
        assert client.download("QmA") == b"second"
        assert calls == ["https://gw1.test/ipfs/QmA", "https://gw2.test/ipfs/QmA"]

    def test_transport_error_moves_on(self):
        client = gateway_client(
            {
                "https://gw1.test/ipfs/QmA": httpx.ConnectTimeout("timed out"),
                "https://gw2.test/ipfs/QmA": httpx.ConnectError("refused"),
                "https://gw3.test/ipfs/QmA": httpx.Response(200, content=b"third"),
            }
        )
        assert client.download("QmA") == b"third"

    def test_all_gateways_exhausted(self):
        calls = []
        client = gateway_client({}, calls)
        with pytest.raises(AllGatewaysExhaustedError) as excinfo:
            client.download("QmMissing")
        assert len(calls) == 3
        assert excinfo.value.status_code == 502
        assert "HTTP 404" in str(excinfo.value)

    def test_transient_failures_retried_with_backoff(self):
        sleeps = []
        answers = iter([httpx.Response(503), httpx.Response(200, content=b"ok")])

        def handler(request):
            return next(answers)

        client = IpfsGatewayClient(
            ["https://gw1.test/ipfs/"],
            attempts_per_gateway=3,
            backoff_seconds=0.5,
            client=httpx.Client(transport=httpx.MockTransport(handler)),
            sleep=sleeps.append,
        )
        assert client.download("QmA") == b"ok"
        assert sleeps == [0.5]

    def test_404_is_not_retried(self):
        calls, sleeps = [], []
        client = gateway_client({}, calls, attempts_per_gateway=3, sleep=sleeps.append)
        with pytest.raises(AllGatewaysExhaustedError):
            client.download("QmA")
        assert len(calls) == 3
        assert sleeps == []


# ---------------------------------------------------------------------------
# Legacy payload parser
# ---------------------------------------------------------------------------


class TestLegacyPayload:
    def test_decode_data_url(self):
        decoded = decode_data_url(data_url("application/pdf", PDF))
        assert decoded.mime_type == "application/pdf"
        assert decoded.data == PDF

    def test_non_data_url_ignored(self):
        assert decode_data_url("https://example.com/doc.pdf") is None
        assert decode_data_url(None) is None
        assert decode_data_url(42) is None

    def test_flat_v1(self):
        payload = parse_legacy_payload(
            {"thumbnail": data_url("image/png", PNG), "document": data_url("application/pdf", PDF)}
        )
        assert payload.shape is PayloadShape.flat_v1
        assert payload.thumbnail.content.data == PNG
        assert [d.content.data for d in payload.documents] == [PDF]

    def test_flat_v2(self):
        payload = parse_legacy_payload(
            {"thumbnailUrl": data_url("image/png", PNG), "fullDocument": data_url("application/pdf", PDF)}
        )
        assert payload.shape is PayloadShape.flat_v2
        assert payload.thumbnail.source == "thumbnailUrl"
        assert payload.documents[0].source == "fullDocument"

    def test_document_priority(self):
        payload = parse_legacy_payload(
            {
                "document": data_url("application/pdf", b"first"),
                "fullDocument": data_url("application/pdf", b"second"),
                "documentUrl": data_url("application/pdf", b"third"),
            }
        )
        assert [d.content.data for d in payload.documents] == [b"first"]

    def test_document_url_fallback(self):
        payload = parse_legacy_payload({"documentUrl": data_url("application/pdf", PDF)})
        assert payload.shape is PayloadShape.flat_v2
        assert payload.thumbnail is None
        assert payload.documents[0].content.data == PDF

    def test_array_v3_first_entry_is_thumbnail(self):
        payload = parse_legacy_payload(
            {
                "documents": [
                    {"data": data_url("image/png", PNG), "name": "alert.png"},
                    {"url": data_url("application/pdf", PDF), "name": "page1.pdf", "type": "application/pdf"},
                ]
            }
        )
        assert payload.shape is PayloadShape.array_v3
        assert payload.thumbnail.name == "alert.png"
        assert [d.name for d in payload.documents] == ["page1.pdf"]

    def test_array_entries_are_documents_when_thumbnail_present(self):
        payload = parse_legacy_payload(
            {
                "thumbnail": data_url("image/png", PNG),
                "documents": [{"data": data_url("application/pdf", PDF)}],
            }
        )
        assert payload.shape is PayloadShape.flat_v1
        assert len(payload.documents) == 1
        assert payload.documents[0].source == "documents[0]"

    def test_entry_type_overrides_mime(self):
        payload = parse_legacy_payload(
            {"documents": [{"data": data_url("application/octet-stream", PDF), "type": "application/pdf"}]}
        )
        assert payload.thumbnail.content.mime_type == "application/pdf"

    def test_unknown_shape(self):
        assert parse_legacy_payload({"foo": "bar"}).assets == ()
        assert parse_legacy_payload({"foo": "bar"}).shape is PayloadShape.unknown
        assert parse_legacy_payload(["not", "a", "dict"]).assets == ()


# ---------------------------------------------------------------------------
# Recovery pipeline
# ---------------------------------------------------------------------------


def add_served_notice(db, notice_id, *, ipfs_hash="QmHash", key=PASSPHRASE, recovered=None, age_minutes=0, server=SERVER):
    db.add(
        ServedNotice(
            notice_id=notice_id,
            ipfs_hash=ipfs_hash,
            case_number=f"CASE-{notice_id}",
            server_address=server,
            recipient_address=RECIPIENT,
            created_at=T0 - timedelta(minutes=age_minutes),
            documents_recovered=recovered,
        )
    )
    db.add(NoticeComponent(notice_id=notice_id, document_encryption_key=key))
    db.commit()


def legacy_blob(payload: dict) -> bytes:
    return crypto.encrypt_legacy(json.dumps(payload), PASSPHRASE).encode("ascii")


@pytest.fixture()
def sleeps() -> list:
    return []


def make_pipeline(db, storage, routes, sleeps) -> IpfsRecoveryPipeline:
    return IpfsRecoveryPipeline(db, storage, gateway_client(routes), sleep=sleeps.append, clock=lambda: T0)


class TestSelectPending:
    def test_selection_rules(self, db, storage, sleeps):
        add_served_notice(db, "n-new", age_minutes=1)
        add_served_notice(db, "n-old", age_minutes=10)
        add_served_notice(db, "n-failed-before", recovered=False, age_minutes=5)
        add_served_notice(db, "n-recovered", recovered=True)
        add_served_notice(db, "n-no-hash", ipfs_hash=None)
        add_served_notice(db, "n-empty-hash", ipfs_hash="")
        add_served_notice(db, "n-no-key", key=None)

        pending = make_pipeline(db, storage, {}, sleeps).select_pending(10)
        assert [p.notice_id for p in pending] == ["n-new", "n-failed-before", "n-old"]
        assert pending[0].encryption_key == PASSPHRASE

    def test_limit(self, db, storage, sleeps):
        for i in range(5):
            add_served_notice(db, f"n-{i}", age_minutes=i)
        pending = make_pipeline(db, storage, {}, sleeps).select_pending(2)
        assert [p.notice_id for p in pending] == ["n-0", "n-1"]


class TestRecoverDocument:
    def test_recovers_thumbnail_and_document(self, db, storage, sleeps):
        add_served_notice(db, "n-1")
        blob = legacy_blob({"thumbnail": data_url("image/png", PNG), "document": data_url("application/pdf", PDF)})
        pipeline = make_pipeline(db, storage, {"https://gw1.test/ipfs/QmHash": httpx.Response(200, content=blob)}, sleeps)

        outcome = pipeline.recover_document(pipeline.select_pending(1)[0])

        assert outcome.success
        assert outcome.thumbnail_recovered and outcome.document_recovered
        served = db.get(ServedNotice, "n-1")
        assert served.documents_recovered is True
        assert served.recovery_status == "Recovered: thumbnail, document"
        assert served.recovery_date is not None

        rows = db.scalars(select(EncryptedDocument).order_by(EncryptedDocument.document_type)).all()
        assert [r.document_type for r in rows] == ["document", "thumbnail"]
        assert {r.notice_id for r in rows} == {"n-1"}
        assert rows[1].original_name == "thumbnail-n-1.png"

        document = storage.retrieve(rows[0].document_id, SERVER)
        assert document.data == PDF
        assert document.mime_type == "application/pdf"

    def test_document_only_status(self, db, storage, sleeps):
        add_served_notice(db, "n-1")
        blob = legacy_blob({"documentUrl": data_url("application/pdf", PDF)})
        pipeline = make_pipeline(db, storage, {"https://gw1.test/ipfs/QmHash": httpx.Response(200, content=blob)}, sleeps)
        pipeline.recover_document(pipeline.select_pending(1)[0])
        assert db.get(ServedNotice, "n-1").recovery_status == "Recovered: document"

    def test_server_address_falls_back(self, db, storage, sleeps):
        add_served_notice(db, "n-1", server=None)
        blob = legacy_blob({"document": data_url("application/pdf", PDF)})
        pipeline = make_pipeline(db, storage, {"https://gw1.test/ipfs/QmHash": httpx.Response(200, content=blob)}, sleeps)
        pipeline.recover_document(pipeline.select_pending(1)[0])
        row = db.scalars(select(EncryptedDocument)).one()
        assert row.server_address == "recovery"

    def test_not_cryptojs_is_failure(self, db, storage, sleeps):
        add_served_notice(db, "n-1")
        pipeline = make_pipeline(
            db, storage, {"https://gw1.test/ipfs/QmHash": httpx.Response(200, content=b'{"plain": "json"}')}, sleeps
        )
        outcome = pipeline.recover_document(pipeline.select_pending(1)[0])
        assert not outcome.success
        served = db.get(ServedNotice, "n-1")
        assert served.documents_recovered is False
        assert served.recovery_status == "Failed: IPFS data is not in CryptoJS format"
        assert served.recovery_date is not None

    def test_gateway_exhaustion_is_failure(self, db, storage, sleeps):
        add_served_notice(db, "n-1")
        pipeline = make_pipeline(db, storage, {}, sleeps)
        outcome = pipeline.recover_document(pipeline.select_pending(1)[0])
        assert not outcome.success
        assert db.get(ServedNotice, "n-1").recovery_status.startswith(
            "Failed: Failed to download from all IPFS gateways"
        )

    def test_wrong_passphrase_is_failure(self, db, storage, sleeps):
        add_served_notice(db, "n-1", key="not-the-passphrase")
        blob = legacy_blob({"document": data_url("application/pdf", PDF)})
        pipeline = make_pipeline(db, storage, {"https://gw1.test/ipfs/QmHash": httpx.Response(200, content=blob)}, sleeps)
        outcome = pipeline.recover_document(pipeline.select_pending(1)[0])
        assert not outcome.success
        assert db.scalars(select(EncryptedDocument)).all() == []

    def test_empty_payload_is_failure(self, db, storage, sleeps):
        add_served_notice(db, "n-1")
        blob = legacy_blob({"caseNumber": "CASE-n-1"})
        pipeline = make_pipeline(db, storage, {"https://gw1.test/ipfs/QmHash": httpx.Response(200, content=blob)}, sleeps)
        outcome = pipeline.recover_document(pipeline.select_pending(1)[0])
        assert not outcome.success
        assert db.get(ServedNotice, "n-1").documents_recovered is False

    def test_unknown_notice_outcome_not_recorded(self, db, storage, sleeps):
        pipeline = make_pipeline(db, storage, {}, sleeps)
        outcome = pipeline.recover_document(PendingNotice(notice_id="ghost", ipfs_hash="QmHash", encryption_key=PASSPHRASE))
        assert not outcome.success


class TestRunBatch:
    def test_partial_failure_batch(self, db, storage, sleeps):
        add_served_notice(db, "n-good", ipfs_hash="QmGood", age_minutes=1)
        add_served_notice(db, "n-bad", ipfs_hash="QmBad", age_minutes=2)
        add_served_notice(db, "n-done", ipfs_hash="QmDone", recovered=True)
        blob = legacy_blob({"document": data_url("application/pdf", PDF)})
        pipeline = make_pipeline(
            db, storage, {"https://gw2.test/ipfs/QmGood": httpx.Response(200, content=blob)}, sleeps
        )

        report = pipeline.run_batch(limit=10, delay=1.0)

        assert (report.total, report.successful, report.failed) == (2, 1, 1)
        assert report.exit_code == 1
        assert [r.notice_id for r in report.results] == ["n-good", "n-bad"]
        assert sleeps == [1.0, 1.0]

        # Failed notices stay eligible; recovered ones do not
        assert [p.notice_id for p in pipeline.select_pending(10)] == ["n-bad"]

    def test_clean_batch_exit_code(self, db, storage, sleeps):
        add_served_notice(db, "n-1")
        blob = legacy_blob({"document": data_url("application/pdf", PDF)})
        pipeline = make_pipeline(db, storage, {"https://gw1.test/ipfs/QmHash": httpx.Response(200, content=blob)}, sleeps)
        report = pipeline.run_batch(limit=10, delay=0.0)
        assert report.exit_code == 0
        assert report.to_dict()["successful"] == 1

    def test_empty_batch(self, db, storage, sleeps):
        report = make_pipeline(db, storage, {}, sleeps).run_batch(limit=10, delay=1.0)
        assert report.total == 0
        assert report.exit_code == 0
        assert sleeps == []
