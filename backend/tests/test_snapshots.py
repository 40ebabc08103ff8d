"""
Tests for the snapshot publisher.

1. Publish -> resolve round trip keeps headers and rows deep-equal
2. Expired wins over token checks
3. Token mismatch is distinct from not found
4. Expiry updates: no backdating, today allowed, re-activation
5. Revoke is idempotent
6. Legacy tokenless snapshots resolve without a token
"""
import pytest
from datetime import date, datetime, timedelta


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 3, 10, 9, 30))


@pytest.fixture
def report():
    from cme_tracker.models.reporting import (
        ReportDataset, PrincipalRecord, CertificateRecord, CategoryRecord, ReportKind,
    )
    from cme_tracker.services.reporting.materializer import materialize, ReportRequest

    dataset = ReportDataset(
        users=[PrincipalRecord(id="u1", name="Lê Hoa", title_id="1")],
        certificates=[CertificateRecord(id="c1", user_id="u1", name="Hồi sức", credits=12.5,
                                        issued_at=datetime(2024, 4, 2))],
        titles=[CategoryRecord(id="1", name="Điều dưỡng")],
    )
    return materialize(dataset, ReportRequest(kind=ReportKind.SUMMARY_DETAIL))


@pytest.fixture
def service(db, clock):
    from cme_tracker.services.snapshots import SnapshotService
    return SnapshotService(db, ttl_days=7, clock=clock)


class TestPublishResolve:

    def test_round_trip_is_deep_equal(self, service, report):
        published = service.publish(report, created_by="Người lập", created_by_id="rep-1")
        view = service.resolve(published.id, published.token)

        assert view.headers == report.headers
        assert view.rows == report.row_dicts()
        assert view.title == report.title
        assert view.created_by == "Người lập"
        assert view.to_report().rows == report.rows

    def test_expiry_is_seven_days_after_publish(self, service, report, clock):
        published = service.publish(report, created_by="A")

        assert published.expires_at == clock.now + timedelta(days=7)
        assert len(published.token) >= 32

    def test_tokens_are_unique(self, service, report):
        first = service.publish(report, created_by="A")
        second = service.publish(report, created_by="A")

        assert first.token != second.token
        assert first.id != second.id

    def test_not_found(self, service):
        from cme_tracker.services.snapshots import SnapshotNotFound

        with pytest.raises(SnapshotNotFound):
            service.resolve("missing", "whatever")

    @pytest.mark.parametrize("token", ["wrong", "", None])
    def test_token_mismatch(self, service, report, token):
        from cme_tracker.services.snapshots import SnapshotTokenMismatch, SnapshotNotFound

        published = service.publish(report, created_by="A")

        with pytest.raises(SnapshotTokenMismatch) as exc_info:
            service.resolve(published.id, token)
        assert not isinstance(exc_info.value, SnapshotNotFound)
        assert exc_info.value.reason == "token_mismatch"

    @pytest.mark.parametrize("use_correct_token", [True, False])
    def test_expired_regardless_of_token(self, service, report, clock, use_correct_token):
        from cme_tracker.services.snapshots import SnapshotExpired

        published = service.publish(report, created_by="A")
        clock.now = published.expires_at

        with pytest.raises(SnapshotExpired):
            service.resolve(published.id, published.token if use_correct_token else "nope")

    def test_legacy_snapshot_without_token(self, db, service, report):
        from cme_tracker.models.db_models import SharedReportDB

        published = service.publish(report, created_by="A")
        row = db.query(SharedReportDB).filter(SharedReportDB.id == published.id).first()
        row.access_token = None
        db.commit()

        assert service.resolve(published.id, None).title == report.title

    def test_corrupt_payload(self, db, service, report):
        from cme_tracker.models.db_models import SharedReportDB
        from cme_tracker.services.snapshots import SnapshotFormatError

        published = service.publish(report, created_by="A")
        row = db.query(SharedReportDB).filter(SharedReportDB.id == published.id).first()
        row.report_data = "{not json"
        db.commit()

        with pytest.raises(SnapshotFormatError):
            service.resolve(published.id, published.token)


class TestExpiryAndRevoke:

    def test_backdating_rejected(self, service, report, clock):
        from cme_tracker.services.snapshots import ExpiryValidationError

        published = service.publish(report, created_by="A")

        with pytest.raises(ExpiryValidationError):
            service.update_expiry(published.id, clock.now.date() - timedelta(days=1))

    def test_today_allowed_and_reactivates(self, service, report, clock):
        published = service.publish(report, created_by="A")
        clock.now = published.expires_at + timedelta(days=3)

        new_expiry = service.update_expiry(published.id, clock.now.date())

        assert new_expiry.date() == clock.now.date()
        assert new_expiry > clock.now
        assert service.resolve(published.id, published.token).id == published.id

    def test_update_unknown_snapshot(self, service):
        from cme_tracker.services.snapshots import SnapshotNotFound

        with pytest.raises(SnapshotNotFound):
            service.update_expiry("missing", date(2030, 1, 1))

    def test_revoke_is_idempotent(self, service, report):
        from cme_tracker.services.snapshots import SnapshotNotFound

        published = service.publish(report, created_by="A")

        assert service.revoke(published.id) is True
        assert service.revoke(published.id) is False
        with pytest.raises(SnapshotNotFound):
            service.resolve(published.id, published.token)

    def test_revoke_many_and_list(self, service, report, clock):
        ids = [service.publish(report, created_by="A").id for _ in range(3)]
        clock.now = clock.now + timedelta(days=8)

        listing = service.list()
        assert len(listing) == 3
        assert all(s.is_expired for s in listing)

        assert service.revoke_many(ids[:2] + ["missing"]) == 2
        assert [s.id for s in service.list()] == [ids[2]]
