# utils/sales_ops/constants.py
"""
Constants for Sales Ops Module

Centralized configuration for:
- Call outcome and call status values
- CRM pipeline-status keyword lists
- Traffic source alias table
- Attribution labels
- Color schemes, chart and Excel settings
"""

# =====================================================================
# CALL OUTCOMES
# =====================================================================

OUTCOME_NO_SHOW = 'no_show'
OUTCOME_RESCHEDULED = 'rescheduled'
OUTCOME_CANCELED = 'canceled'
OUTCOME_NOT_QUALIFIED = 'not_qualified'
OUTCOME_LOST = 'lost'
OUTCOME_CLOSED = 'closed'
OUTCOME_OFFER_NO_CLOSE = 'showed_offer_no_close'
OUTCOME_NO_OFFER = 'showed_no_offer'

EVENT_OUTCOMES = [
    OUTCOME_NO_SHOW,
    OUTCOME_RESCHEDULED,
    OUTCOME_CANCELED,
    OUTCOME_NOT_QUALIFIED,
    OUTCOME_LOST,
    OUTCOME_CLOSED,
    OUTCOME_OFFER_NO_CLOSE,
    OUTCOME_NO_OFFER,
]

OUTCOME_LABELS = {
    OUTCOME_NO_SHOW: 'No Show',
    OUTCOME_RESCHEDULED: 'Rescheduled',
    OUTCOME_CANCELED: 'Canceled',
    OUTCOME_NOT_QUALIFIED: 'Not Qualified',
    OUTCOME_LOST: 'Lost',
    OUTCOME_CLOSED: 'Closed',
    OUTCOME_OFFER_NO_CLOSE: 'Showed - Offer, No Close',
    OUTCOME_NO_OFFER: 'Showed - No Offer',
}

# Outcomes that count as "the lead showed up"
SHOWED_OUTCOMES = {OUTCOME_NO_OFFER, OUTCOME_OFFER_NO_CLOSE, OUTCOME_CLOSED}

# Outcomes that count as "an offer was made"
OFFER_OUTCOMES = {OUTCOME_OFFER_NO_CLOSE, OUTCOME_CLOSED}

# =====================================================================
# CALL STATUS
# =====================================================================

STATUS_SCHEDULED = 'scheduled'
STATUS_COMPLETED = 'completed'
STATUS_NO_SHOW = 'no_show'
STATUS_CANCELED = 'canceled'
STATUS_CANCELLED = 'cancelled'
STATUS_RESCHEDULED = 'rescheduled'

CALL_STATUSES = [
    STATUS_SCHEDULED,
    STATUS_COMPLETED,
    STATUS_NO_SHOW,
    STATUS_CANCELED,
    STATUS_RESCHEDULED,
]

# Both spellings of canceled show up in booking-platform payloads
CANCELED_STATUSES = {STATUS_CANCELED, STATUS_CANCELLED}

# Not counted as a booked call
EXCLUDED_BOOKING_STATUSES = {STATUS_CANCELED, STATUS_CANCELLED, STATUS_RESCHEDULED}

# =====================================================================
# CRM PIPELINE STATUS KEYWORDS
# =====================================================================

CLOSED_STATUSES = ['Closed Won', 'Won']
NOT_QUALIFIED_STATUSES = ['Unqualified', 'Not Qualified', 'Disqualified', 'DQ']
LOST_STATUSES = ['Lost']
RESCHEDULED_STATUSES = ['Needs Reschedule', 'Rescheduled', 'Reschedule']
CANCELED_PIPELINE_STATUSES = ['Canceled', 'Cancelled', 'Cancel']
NO_SHOW_STATUSES = ['No Show', 'No-Show', 'NoShow', 'DNS', 'Did Not Show']

# Rep portal free-text outcome labels, checked in order
LABEL_CLOSED_KEYWORDS = ['closed', 'won', 'paid']
LABEL_NOT_QUALIFIED_KEYWORDS = ['not qualified', 'not-qualified', 'unqualified', 'disqualified', 'dq']
LABEL_LOST_KEYWORDS = ['lost', 'dead']
LABEL_NO_SHOW_KEYWORDS = ['no show', 'no-show', 'dns']
LABEL_RESCHEDULE_KEYWORDS = ['reschedule']
LABEL_CANCEL_KEYWORDS = ['cancel']

# =====================================================================
# TRAFFIC SOURCES
# =====================================================================

# Canonical name -> lowercase aliases seen in UTM / CRM fields
TRAFFIC_SOURCE_ALIASES = {
    'Instagram': ['instagram', 'ig'],
    'X': ['x', 'twitter'],
    'Facebook': ['facebook', 'fb'],
    'LinkedIn': ['linkedin'],
    'YouTube': ['youtube', 'yt'],
    'TikTok': ['tiktok'],
    'Newsletter': ['newsletter', 'email'],
    'Organic': ['organic'],
    'Referral': ['referral'],
    'Podcast': ['podcast'],
}

UNKNOWN_SOURCE = 'Unknown'

# =====================================================================
# ATTRIBUTION
# =====================================================================

NO_ATTRIBUTION = '(No Attribution)'
QUIZ_FUNNEL = 'Quiz Funnel'
NO_CHANNEL = '(none)'
UNATTRIBUTED_SETTER = '(unattributed)'
UNKNOWN_CAPITAL_TIER = '(unknown)'

QUIZ_EMAIL_KEYS = ['quiz_email', 'quiz email', 'quizEmail']
CAPITAL_QUESTION_KEYS = ['capital_question', 'Long capital question', 'capitalQuestion', 'Capital Question']
IG_HANDLE_KEYS = ['IGHANDLE', 'ighandle', 'IG Handle', 'ig_handle', 'instagram_handle']

ATTRIBUTION_LEVELS = ['platform', 'channel', 'setter', 'capital_tier']

# Setter values that are tracking noise rather than names
JUNK_SETTER_PATTERNS = [
    r'^user_[a-zA-Z0-9]+$',
    r'^[a-z]{1,2}$',
    r'^[0-9]+$',
    r'^utm_',
    r'^https?://',
]

# =====================================================================
# TEAM & COMMISSIONS
# =====================================================================

INVITE_TYPES = ['whitelabel', 'sales_rep', 'admin', 'client_admin']
INVITE_ROLES = ['admin', 'member']
INVITE_STATUSES = ['pending', 'accepted', 'expired']

PAYMENT_TYPES = {
    'paid_in_full': 'Paid in Full',
    'split_pay': 'Split Pay',
    'deposit': 'Deposit',
}

UNIVERSAL_TOKEN_NAME = '__UNIVERSAL__'

# Public pages opened from emailed links; must match the pages/ file names
REP_COMMISSIONS_PATH = 'my-commissions'
ACCEPT_INVITE_PATH = 'accept-invite'

REP_TYPE_CLOSER = 'closer'
REP_TYPE_SETTER = 'setter'

# =====================================================================
# SORT OPTIONS
# =====================================================================

REP_LEADERBOARD_SORTS = {
    'revenue': 'Revenue',
    'close_rate': 'Close Rate',
    'deals_closed': 'Deals Closed',
    'completed_calls': 'Completed Calls',
}

SETTER_LEADERBOARD_SORTS = {
    'calls_set': 'Calls Set',
    'show_rate': 'Show Rate',
    'close_rate': 'Close Rate',
}

OUTCOME_FILTERS = ['all', 'showed', 'closed', 'no_show']

# =====================================================================
# COLOR SCHEME
# =====================================================================

COLORS = {
    "showed": "#2ca02c",               # Green
    "no_show": "#d62728",              # Red
    "closed": "#1f77b4",               # Blue
    "offer": "#FFA500",                # Orange
    "canceled": "#7f7f7f",             # Grey
    "rescheduled": "#bcbd22",          # Olive
    "revenue": "#17becf",              # Cyan
    "pending": "#e377c2",              # Pink

    "text_dark": "#333333",
    "text_light": "#666666",
    "grid": "#e0e0e0",
}

OUTCOME_COLORS = {
    OUTCOME_NO_SHOW: COLORS["no_show"],
    OUTCOME_RESCHEDULED: COLORS["rescheduled"],
    OUTCOME_CANCELED: COLORS["canceled"],
    OUTCOME_NOT_QUALIFIED: "#9467bd",
    OUTCOME_LOST: "#8c564b",
    OUTCOME_CLOSED: COLORS["closed"],
    OUTCOME_OFFER_NO_CLOSE: COLORS["offer"],
    OUTCOME_NO_OFFER: COLORS["showed"],
}

# =====================================================================
# CHART / TABLE SETTINGS
# =====================================================================

CHART_WIDTH = 800
CHART_HEIGHT = 350
DEFAULT_PAGE_SIZE = 25

# Cache settings (seconds)
CACHE_TTL_SECONDS = 300

# =====================================================================
# EXCEL EXPORT STYLES
# =====================================================================

EXCEL_STYLES = {
    "header_fill": "1F4E79",
    "header_font_color": "FFFFFF",
    "currency_format": "$#,##0",
    "percent_format": "0.0%",
    "number_format": "#,##0",
    "date_format": "YYYY-MM-DD",
}

# Local time used for "today", overdue cut-offs and export formatting
DEFAULT_TIMEZONE = 'America/New_York'
