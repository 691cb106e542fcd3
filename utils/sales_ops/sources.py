# utils/sales_ops/sources.py
"""
Traffic Source Normalization & Identity Resolution

- Canonical traffic source names from free-form UTM / CRM values
  ("ig", "IG ", "instagram" -> "Instagram")
- Setter / campaign extraction from an event row
- Setter name cleanup through the setter alias table, with junk filtering
- Closer display names keyed by email or name
- Setter lookup from an Instagram handle captured on the booking form
"""

import logging
import re
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .constants import (
    TRAFFIC_SOURCE_ALIASES,
    JUNK_SETTER_PATTERNS,
    IG_HANDLE_KEYS,
)
from .fields import as_dict, clean_str

logger = logging.getLogger(__name__)

# alias -> canonical, built once from the alias table
_ALIAS_TO_CANONICAL: Dict[str, str] = {
    alias: canonical
    for canonical, aliases in TRAFFIC_SOURCE_ALIASES.items()
    for alias in aliases
}

_JUNK_SETTER_REGEXES = [re.compile(p, re.IGNORECASE) for p in JUNK_SETTER_PATTERNS]


# =============================================================================
# TRAFFIC SOURCES
# =============================================================================

def get_canonical_source(raw: Optional[str]) -> str:
    """
    Map a raw source value to its canonical name.

    Unknown sources are returned trimmed but otherwise untouched.
    """
    if not raw:
        return ''
    key = raw.strip().lower()
    return _ALIAS_TO_CANONICAL.get(key, raw.strip())


def get_source_aliases(canonical: str) -> List[str]:
    """All raw values that map to `canonical` (used for SQL IN filters)."""
    aliases = TRAFFIC_SOURCE_ALIASES.get(canonical)
    if aliases:
        return list(aliases)
    return [canonical.lower()]


def matches_canonical_source(raw: Optional[str], canonical: str) -> bool:
    if not raw:
        return False
    return get_canonical_source(raw) == canonical


def get_all_canonical_sources() -> List[str]:
    return list(TRAFFIC_SOURCE_ALIASES.keys())


# =============================================================================
# EVENT FIELD EXTRACTION
# =============================================================================

def extract_traffic_source(event: Mapping) -> Optional[str]:
    """UTM platform first, then the CRM `platform` custom field."""
    metadata = as_dict(event.get('booking_metadata'))
    custom = as_dict(event.get('close_custom_fields'))

    raw = clean_str(metadata.get('utm_platform')) or clean_str(custom.get('platform'))
    if not raw:
        return None
    return get_canonical_source(raw)


def extract_setter(event: Mapping) -> Optional[str]:
    metadata = as_dict(event.get('booking_metadata'))
    return clean_str(metadata.get('utm_setter')) or clean_str(event.get('setter_name'))


def extract_campaign(event: Mapping) -> Optional[str]:
    metadata = as_dict(event.get('booking_metadata'))
    return clean_str(metadata.get('utm_campaign'))


# =============================================================================
# SETTER / CLOSER IDENTITY
# =============================================================================

def is_junk_setter_name(name: Optional[str]) -> bool:
    """Tracking ids, initials, numbers and URLs are not setter names."""
    value = clean_str(name)
    if not value:
        return True
    return any(regex.search(value) for regex in _JUNK_SETTER_REGEXES)


def build_alias_map(rows: Iterable[Mapping]) -> Dict[str, str]:
    """
    Build lower(alias_name) -> canonical_name from `setter_aliases` rows.
    """
    alias_map = {}
    for row in rows:
        alias = clean_str(row.get('alias_name'))
        canonical = clean_str(row.get('canonical_name'))
        if alias and canonical:
            alias_map[alias.lower()] = canonical
    return alias_map


def resolve_setter_name(raw: Optional[str], alias_map: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """
    Clean up a raw setter value.

    Returns:
        None for empty/junk values, the alias target when one exists,
        otherwise the trimmed raw value.
    """
    value = clean_str(raw)
    if not value or is_junk_setter_name(value):
        return None
    if alias_map:
        return alias_map.get(value.lower(), value)
    return value


def to_title_case(value: Optional[str]) -> str:
    if not value:
        return ''
    return ' '.join(word[:1].upper() + word[1:].lower() for word in value.split())


def build_closer_display_name_map(closers: Iterable[Mapping]) -> Dict[str, str]:
    """
    Map lower(email) and lower(name) -> display name.

    Emails win over names when both collide.
    """
    by_name = {}
    by_email = {}
    for closer in closers:
        name = clean_str(closer.get('name'))
        if not name:
            continue
        email = clean_str(closer.get('email'))
        if email:
            by_email[email.lower()] = name
        by_name.setdefault(name.lower(), name)
    display_map = dict(by_name)
    display_map.update(by_email)
    return display_map


def resolve_closer_display_name(
    name: Optional[str],
    email: Optional[str],
    display_map: Mapping[str, str]
) -> Optional[str]:
    email_value = clean_str(email)
    if email_value and email_value.lower() in display_map:
        return display_map[email_value.lower()]
    name_value = clean_str(name)
    if name_value and name_value.lower() in display_map:
        return display_map[name_value.lower()]
    return name_value


# =============================================================================
# INSTAGRAM HANDLES
# =============================================================================

def normalize_ig_handle(handle: Optional[str]) -> str:
    if not handle:
        return ''
    return handle.strip().lstrip('@').strip().lower()


def extract_ig_handle(responses: Optional[Mapping]) -> Optional[str]:
    data = as_dict(responses)
    for key in IG_HANDLE_KEYS:
        value = clean_str(data.get(key))
        if value:
            return value
    return None


def build_ig_alias_map(rows: Iterable[Mapping]) -> Dict[str, str]:
    """normalized ig handle -> setter name, from setter alias rows with ig_handle set."""
    ig_map = {}
    for row in rows:
        handle = normalize_ig_handle(clean_str(row.get('ig_handle')))
        setter = clean_str(row.get('canonical_name'))
        if handle and setter:
            ig_map[handle] = setter
    return ig_map


def resolve_setter_from_ig_handle(
    handle: Optional[str],
    ig_alias_map: Mapping[str, str]
) -> Optional[str]:
    """
    Exact handle match first, then containment either way
    ("@jane.sales" matches "jane").
    """
    normalized = normalize_ig_handle(handle)
    if not normalized or not ig_alias_map:
        return None

    if normalized in ig_alias_map:
        return ig_alias_map[normalized]

    for alias, setter in ig_alias_map.items():
        if alias and (alias in normalized or normalized in alias):
            return setter
    return None


def resolve_event_setter(
    event: Mapping,
    alias_map: Optional[Mapping[str, str]] = None,
    ig_alias_map: Optional[Mapping[str, str]] = None
) -> Tuple[Optional[str], str]:
    """
    Resolve the setter of an event and say where it came from.

    Returns:
        (setter_name or None, source) with source one of
        'utm', 'crm', 'ighandle', 'none'
    """
    metadata = as_dict(event.get('booking_metadata'))
    utm_setter = resolve_setter_name(metadata.get('utm_setter'), alias_map)
    if utm_setter:
        return utm_setter, 'utm'

    crm_setter = resolve_setter_name(event.get('setter_name'), alias_map)
    if crm_setter:
        return crm_setter, 'crm'

    if ig_alias_map:
        handle = extract_ig_handle(event.get('booking_responses'))
        ig_setter = resolve_setter_from_ig_handle(handle, ig_alias_map)
        if ig_setter:
            return ig_setter, 'ighandle'

    return None, 'none'
