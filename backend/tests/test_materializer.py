"""
Tests for the report materializer: row shapes per kind, the zero-total
edge cases, grouped ordering and the interactive sort contract.
"""
import pytest
from datetime import date, datetime


@pytest.fixture
def dataset():
    from cme_tracker.models.reporting import (
        ReportDataset, PrincipalRecord, CertificateRecord, CategoryRecord,
    )
    users = [
        PrincipalRecord(id="u1", name="Trần Bình", role="user", department_id="d1", title_id="1"),
        PrincipalRecord(id="u2", name="Đỗ Anh", role="reporter_user", department_id="d1", title_id="4"),
        PrincipalRecord(id="u3", name="Anh Thư", role="user", department_id="d2", title_id="1"),
        PrincipalRecord(id="admin", name="Quản trị", role="admin"),
        PrincipalRecord(id="rep", name="Báo cáo viên", role="reporter"),
    ]
    certificates = [
        CertificateRecord(id="c1", user_id="u1", name="Hồi sức", credits=40, issued_at=datetime(2023, 5, 1)),
        CertificateRecord(id="c2", user_id="u1", name="Cấp cứu", credits=85, issued_at=datetime(2023, 2, 1)),
        CertificateRecord(id="c3", user_id="u2", name="Dược lâm sàng", credits=8, issued_at=datetime(2024, 6, 1)),
        CertificateRecord(id="c4", user_id="admin", name="Quản lý", credits=99, issued_at=datetime(2023, 1, 1)),
    ]
    return ReportDataset(
        users=users,
        certificates=certificates,
        departments=[CategoryRecord(id="d1", name="Khoa Nội"), CategoryRecord(id="d2", name="Khoa Ngoại")],
        titles=[CategoryRecord(id="1", name="Bác sĩ"), CategoryRecord(id="4", name="Dược sĩ")],
    )


def _request(kind, **kwargs):
    from cme_tracker.services.reporting.materializer import ReportRequest
    return ReportRequest(kind=kind, **kwargs)


# =============================================================================
# TEST: REPORT KINDS
# =============================================================================

class TestReportKinds:
    """Each kind has its own headers and row type."""

    def test_compliance_requires_cycle(self, dataset):
        from cme_tracker.models.reporting import ReportKind
        from cme_tracker.services.reporting.materializer import materialize, ReportRequestError

        with pytest.raises(ReportRequestError):
            materialize(dataset, _request(ReportKind.COMPLIANCE))

    def test_compliance_rows(self, dataset):
        from cme_tracker.models.reporting import ReportKind, ComplianceCycle, ComplianceRow
        from cme_tracker.services.reporting.aggregator import CompliancePolicy
        from cme_tracker.services.reporting.materializer import materialize

        report = materialize(
            dataset,
            _request(ReportKind.COMPLIANCE, cycle=ComplianceCycle(2022, 2024)),
            CompliancePolicy(exempt_title_id="4", exempt_target=8, standard_target=120),
        )
        rows = {r.id: r for r in report.rows}

        assert all(isinstance(r, ComplianceRow) for r in report.rows)
        # Only staff roles are reported on
        assert set(rows) == {"u1", "u2", "u3"}
        assert (rows["u1"].total_credits, rows["u1"].status) == (125, "met")
        assert (rows["u2"].requirement, rows["u2"].status) == (8, "met")
        assert (rows["u3"].total_credits, rows["u3"].status) == (0, "unmet")
        assert list(report.headers) == ["name", "title", "total_credits", "requirement", "status"]
        assert "2022-2024" in report.title

    def test_summary_keeps_zero_total_principals(self, dataset):
        from cme_tracker.models.reporting import ReportKind, TimeFilter, FilterMode
        from cme_tracker.services.reporting.materializer import materialize

        report = materialize(dataset, _request(
            ReportKind.SUMMARY, time_filter=TimeFilter(mode=FilterMode.YEAR, year=2024)
        ))
        totals = {r.id: r.total_credits for r in report.rows}

        assert totals == {"u1": 0, "u2": 8, "u3": 0}
        u3 = next(r for r in report.rows if r.id == "u3")
        assert (u3.department, u3.title) == ("Khoa Ngoại", "Bác sĩ")

    def test_summary_detail_nests_certificates(self, dataset):
        from cme_tracker.models.reporting import ReportKind
        from cme_tracker.services.reporting.materializer import materialize

        report = materialize(dataset, _request(ReportKind.SUMMARY_DETAIL))
        u1 = next(r for r in report.rows if r.id == "u1")
        u3 = next(r for r in report.rows if r.id == "u3")

        # Oldest first inside a principal
        assert [c.name for c in u1.certificates] == ["Cấp cứu", "Hồi sức"]
        assert u1.total_credits == 125
        assert u3.certificates == [] and u3.total_credits == 0

    def test_detail_omits_zero_certificate_principals(self, dataset):
        from cme_tracker.models.reporting import ReportKind, CertificateDetailRow
        from cme_tracker.services.reporting.materializer import materialize

        report = materialize(dataset, _request(ReportKind.DETAIL))

        assert all(isinstance(r, CertificateDetailRow) for r in report.rows)
        assert {r.user_id for r in report.rows} == {"u1", "u2"}
        assert all(r.user_total_credits == 125 for r in report.rows if r.user_id == "u1")
        assert next(r for r in report.rows if r.id == "c2").issued_on == "2023-02-01"

    def test_department_report_groups(self, dataset):
        from cme_tracker.models.reporting import ReportKind
        from cme_tracker.services.reporting.materializer import materialize

        report = materialize(dataset, _request(ReportKind.DEPARTMENT))

        assert [g.group_name for g in report.groups] == ["Khoa Ngoại", "Khoa Nội"]
        noi = report.groups[1]
        # Members ordered by Vietnamese name: "Đ" sorts between "D" and "E"
        assert [r.name for r in noi.rows] == ["Đỗ Anh", "Trần Bình"]
        assert noi.total_credits == 133

    def test_title_report_category_filter(self, dataset):
        from cme_tracker.models.reporting import ReportKind
        from cme_tracker.services.reporting.materializer import materialize

        report = materialize(dataset, _request(ReportKind.TITLE, category_id="4"))

        assert [r.id for r in report.rows] == ["u2"]
        assert [g.group_name for g in report.groups] == ["Dược sĩ"]


# =============================================================================
# TEST: SORTING
# =============================================================================

class TestSortRows:
    """Interactive sort contract."""

    def test_sort_by_name_uses_vietnamese_collation(self, dataset):
        from cme_tracker.models.reporting import ReportKind
        from cme_tracker.services.reporting.materializer import materialize

        report = materialize(dataset, _request(ReportKind.SUMMARY, sort_key="name"))

        assert [r.name for r in report.rows] == ["Anh Thư", "Đỗ Anh", "Trần Bình"]

    def test_sort_numeric_descending(self, dataset):
        from cme_tracker.models.reporting import ReportKind, SortDirection
        from cme_tracker.services.reporting.materializer import materialize

        report = materialize(dataset, _request(
            ReportKind.SUMMARY, sort_key="total_credits", sort_direction=SortDirection.DESCENDING
        ))

        assert [r.total_credits for r in report.rows] == [125, 8, 0]

    @pytest.mark.parametrize("kind", ["department", "title", "detail"])
    def test_fixed_order_kinds_ignore_sort(self, dataset, kind):
        from cme_tracker.models.reporting import ReportKind, SortDirection
        from cme_tracker.services.reporting.materializer import materialize

        unsorted = materialize(dataset, _request(ReportKind(kind)))
        sorted_ = materialize(dataset, _request(
            ReportKind(kind), sort_key="name", sort_direction=SortDirection.DESCENDING
        ))

        assert [r.id for r in sorted_.rows] == [r.id for r in unsorted.rows]

    def test_unknown_column_rejected(self, dataset):
        from cme_tracker.models.reporting import ReportKind
        from cme_tracker.services.reporting.materializer import materialize, ReportRequestError

        with pytest.raises(ReportRequestError):
            materialize(dataset, _request(ReportKind.SUMMARY, sort_key="actions"))

    def test_nested_column_keeps_order(self, dataset):
        from cme_tracker.models.reporting import ReportKind
        from cme_tracker.services.reporting.materializer import materialize

        plain = materialize(dataset, _request(ReportKind.SUMMARY_DETAIL))
        sorted_ = materialize(dataset, _request(ReportKind.SUMMARY_DETAIL, sort_key="certificates"))

        assert [r.id for r in sorted_.rows] == [r.id for r in plain.rows]


class TestDescribePeriod:

    def test_labels(self):
        from cme_tracker.models.reporting import ReportKind, TimeFilter, FilterMode
        from cme_tracker.services.reporting.materializer import describe_period

        assert describe_period(_request(ReportKind.SUMMARY)) == "Toàn thời gian"
        assert describe_period(_request(
            ReportKind.SUMMARY, time_filter=TimeFilter(mode=FilterMode.YEAR, year=2024)
        )) == "Năm 2024"
        assert describe_period(_request(
            ReportKind.DETAIL,
            time_filter=TimeFilter(mode=FilterMode.RANGE, start=date(2024, 1, 5), end=date(2024, 2, 1)),
        )) == "Từ 05/01/2024 đến 01/02/2024"
