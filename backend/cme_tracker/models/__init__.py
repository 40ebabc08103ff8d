"""CME Tracker - Data Models"""
from .reporting import (
    # Enums
    FilterMode, ReportKind, ComplianceStatus, GroupDimension, SortDirection,
    # Inputs
    TimeFilter, ComplianceCycle, PrincipalRecord, CertificateRecord, CategoryRecord, ReportDataset,
    # Aggregation output
    ComplianceResult, RowGroup,
    # Report rows
    ComplianceRow, SummaryRow, CertificateLine, NestedDetailRow, CertificateDetailRow,
    ReportGroup, MaterializedReport, ReportRow,
    # Helpers
    ROW_TYPES, row_from_dict, rows_from_dicts,
)

__all__ = [
    "FilterMode", "ReportKind", "ComplianceStatus", "GroupDimension", "SortDirection",
    "TimeFilter", "ComplianceCycle", "PrincipalRecord", "CertificateRecord", "CategoryRecord", "ReportDataset",
    "ComplianceResult", "RowGroup",
    "ComplianceRow", "SummaryRow", "CertificateLine", "NestedDetailRow", "CertificateDetailRow",
    "ReportGroup", "MaterializedReport", "ReportRow",
    "ROW_TYPES", "row_from_dict", "rows_from_dicts",
]
