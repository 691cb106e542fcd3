# utils/sales_ops/__init__.py
"""
Sales Ops Module

Utilities for the sales operations pages (calls, closers, setters, PCFs,
attribution, commissions, team). All components are self-contained within
this module.

Components:
- constants / fields: shared values and null-safe field helpers
- sources / outcomes: traffic source aliases, setter resolution, call outcomes
- filters: event filters and sidebar widgets
- metrics: dashboard KPIs, closer table, leaderboards, calls report
- attribution: platform -> channel -> setter drill-down
- formula_engine / custom_metrics: calculated fields and metric definitions
- pcf / commissions / team: write-side services
- functions_client / notifications: serverless function calls and email
- queries: SQL data loading with caching
- charts / fragments / export: Altair charts, Streamlit fragments, CSV + Excel

Usage:
    from utils.sales_ops import (
        SalesOpsQueries,
        CallMetrics,
        SalesOpsCharts,
        SalesOpsExport,
    )
"""

from .queries import SalesOpsQueries
from .metrics import CallMetrics
from .charts import SalesOpsCharts
from .export import SalesOpsExport, to_csv, CsvColumn
from .filters import EventFilters, apply_event_filters
from .attribution import AttributionFilters, build_attribution_tree
from .outcomes import classify_pipeline_status, classify_outcome_label, derive_event_outcome
from .pcf import PCFService, PCFSubmission
from .commissions import CommissionLinkService
from .team import InvitationService

# Constants
from .constants import (
    COLORS,
    EVENT_OUTCOMES,
    OUTCOME_LABELS,
    CALL_STATUSES,
    INVITE_TYPES,
    INVITE_ROLES,
    CACHE_TTL_SECONDS,
    DEFAULT_TIMEZONE,
)

__all__ = [
    # Classes
    'SalesOpsQueries',
    'CallMetrics',
    'SalesOpsCharts',
    'SalesOpsExport',
    'EventFilters',
    'AttributionFilters',
    'PCFService',
    'PCFSubmission',
    'CommissionLinkService',
    'InvitationService',
    'CsvColumn',

    # Functions
    'to_csv',
    'apply_event_filters',
    'build_attribution_tree',
    'classify_pipeline_status',
    'classify_outcome_label',
    'derive_event_outcome',

    # Constants
    'COLORS',
    'EVENT_OUTCOMES',
    'OUTCOME_LABELS',
    'CALL_STATUSES',
    'INVITE_TYPES',
    'INVITE_ROLES',
    'CACHE_TTL_SECONDS',
    'DEFAULT_TIMEZONE',
]

__version__ = '1.0.0'
