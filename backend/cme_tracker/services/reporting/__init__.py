"""
CME Tracker - Reporting Pipeline

Loader -> Aggregator -> Materializer -> (Exporters | Snapshot Publisher)
"""
from .aggregator import (
    CompliancePolicy, DEFAULT_POLICY,
    filter_by_time, filter_by_cycle, sum_by_user, evaluate_compliance, group_by, order_groups,
)
from .materializer import ReportMaterializer, ReportRequest, ReportRequestError, materialize, sort_rows
from .loader import ReportDataLoader

__all__ = [
    "CompliancePolicy", "DEFAULT_POLICY",
    "filter_by_time", "filter_by_cycle", "sum_by_user", "evaluate_compliance", "group_by", "order_groups",
    "ReportMaterializer", "ReportRequest", "ReportRequestError", "materialize", "sort_rows",
    "ReportDataLoader",
]
