# utils/sales_ops/attribution.py
"""
Source Attribution Drill-Down

Builds a platform -> channel -> setter (-> capital tier) tree over booked
events, with total / showed / closed counts and whole-percent rates at every
level.

Platform priority: UTM platform > quiz funnel > CRM platform > none.
Setter priority: UTM setter > CRM setter > Instagram handle > unattributed.

Node rates:
    show_rate  = showed / total
    close_rate = closed / showed
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .constants import (
    NO_ATTRIBUTION, QUIZ_FUNNEL, NO_CHANNEL, UNATTRIBUTED_SETTER, UNKNOWN_CAPITAL_TIER,
    QUIZ_EMAIL_KEYS, CAPITAL_QUESTION_KEYS, SHOWED_OUTCOMES, OUTCOME_CLOSED,
)
from .fields import as_dict, clean_str, to_records
from .outcomes import is_booked
from .sources import (
    extract_ig_handle, get_canonical_source, resolve_setter_from_ig_handle, resolve_setter_name,
)

logger = logging.getLogger(__name__)


@dataclass
class TreeNode:
    id: str
    name: str
    level: str
    total: int = 0
    showed: int = 0
    closed: int = 0
    show_rate: int = 0
    close_rate: int = 0
    children: List['TreeNode'] = field(default_factory=list)
    attribution_source: Optional[str] = None

    def add(self, other: 'TreeNode'):
        self.total += other.total
        self.showed += other.showed
        self.closed += other.closed

    def finalize(self):
        self.show_rate = _pct(self.showed, self.total)
        self.close_rate = _pct(self.closed, self.showed)


@dataclass
class AttributionFilters:
    """'all' or None means no filter for that level."""
    platform: Optional[str] = None
    channel: Optional[str] = None
    setter: Optional[str] = None
    capital_tier: Optional[str] = None
    show_capital_tiers: bool = False


def _pct(numerator: int, denominator: int) -> int:
    if not denominator:
        return 0
    return int(math.floor(numerator / denominator * 100 + 0.5))


def _filter_excludes(wanted: Optional[str], value: str) -> bool:
    return bool(wanted) and wanted != 'all' and value != wanted


# =============================================================================
# PER-EVENT ATTRIBUTION
# =============================================================================

def is_quiz_funnel(event: Mapping) -> bool:
    responses = as_dict(event.get('booking_responses'))
    return any(clean_str(responses.get(k)) for k in QUIZ_EMAIL_KEYS)


def get_attribution_platform(event: Mapping) -> Tuple[str, str]:
    """
    Returns:
        (platform, source) with source one of 'utm', 'quiz', 'crm', 'none'
    """
    metadata = as_dict(event.get('booking_metadata'))
    custom = as_dict(event.get('close_custom_fields'))

    utm_platform = clean_str(metadata.get('utm_platform'))
    if utm_platform:
        return get_canonical_source(utm_platform), 'utm'
    if is_quiz_funnel(event):
        return QUIZ_FUNNEL, 'quiz'
    crm_platform = clean_str(custom.get('platform'))
    if crm_platform:
        return get_canonical_source(crm_platform), 'crm'
    return NO_ATTRIBUTION, 'none'


def get_attribution_channel(event: Mapping) -> str:
    metadata = as_dict(event.get('booking_metadata'))
    return clean_str(metadata.get('utm_channel')) or NO_CHANNEL


def get_attribution_setter(
    event: Mapping,
    alias_map: Optional[Mapping[str, str]] = None,
    ig_alias_map: Optional[Mapping[str, str]] = None
) -> Tuple[str, str]:
    """
    Returns:
        (setter, source) with source one of 'utm', 'crm', 'ighandle', 'none'
    """
    metadata = as_dict(event.get('booking_metadata'))
    utm_setter = clean_str(metadata.get('utm_setter'))
    crm_setter = clean_str(event.get('setter_name'))

    resolved = resolve_setter_name(utm_setter or crm_setter, alias_map)
    if resolved:
        return resolved, 'utm' if utm_setter else 'crm'

    handle = extract_ig_handle(event.get('booking_responses'))
    ig_setter = resolve_setter_from_ig_handle(handle, ig_alias_map or {})
    if ig_setter:
        return ig_setter, 'ighandle'

    return UNATTRIBUTED_SETTER, 'none'


def has_raw_setter(event: Mapping) -> bool:
    """True when the booking carries any UTM or CRM setter value, junk included."""
    metadata = as_dict(event.get('booking_metadata'))
    return bool(clean_str(metadata.get('utm_setter')) or clean_str(event.get('setter_name')))


def get_capital_tier(event: Mapping) -> str:
    responses = as_dict(event.get('booking_responses'))
    for key in CAPITAL_QUESTION_KEYS:
        tier = clean_str(responses.get(key))
        if tier:
            return tier
    return UNKNOWN_CAPITAL_TIER


# =============================================================================
# TREE
# =============================================================================

def _platform_sort_key(node: TreeNode):
    return (node.name == NO_ATTRIBUTION, -node.total, node.name != QUIZ_FUNNEL)


def _channel_sort_key(node: TreeNode):
    return (node.name == NO_CHANNEL, -node.total)


def build_attribution_tree(
    events,
    alias_map: Optional[Mapping[str, str]] = None,
    ig_alias_map: Optional[Mapping[str, str]] = None,
    filters: AttributionFilters = None
) -> List[TreeNode]:
    """
    Build the attribution tree.

    Canceled and rescheduled events are left out. Nodes with nothing left
    after filtering are dropped. Children sort by total descending; the
    '(none)' channel and '(No Attribution)' platform always sort last.
    """
    filters = filters or AttributionFilters()

    # platform -> channel -> setter -> tier -> counts
    nested: Dict[str, Dict] = {}
    platform_sources: Dict[str, str] = {}

    for event in to_records(events):
        if not is_booked(event):
            continue

        platform, source = get_attribution_platform(event)
        channel = get_attribution_channel(event)
        setter, setter_source = get_attribution_setter(event, alias_map, ig_alias_map)
        tier = get_capital_tier(event)
        if source == 'none' and setter_source == 'ighandle' and not has_raw_setter(event):
            source = 'ighandle'

        platform_sources.setdefault(platform, source)
        outcome = clean_str(event.get('event_outcome'))
        counts = (
            nested.setdefault(platform, {})
            .setdefault(channel, {})
            .setdefault(setter, {})
            .setdefault(tier, [0, 0, 0])
        )
        counts[0] += 1
        counts[1] += 1 if outcome in SHOWED_OUTCOMES else 0
        counts[2] += 1 if outcome == OUTCOME_CLOSED else 0

    tree = []
    for platform, channels in nested.items():
        if _filter_excludes(filters.platform, platform):
            continue
        platform_node = TreeNode(
            id=f"platform-{platform}", name=platform, level='platform',
            attribution_source=platform_sources.get(platform),
        )

        for channel, setters in channels.items():
            if _filter_excludes(filters.channel, channel):
                continue
            channel_node = TreeNode(id=f"channel-{platform}-{channel}", name=channel, level='channel')

            for setter, tiers in setters.items():
                if _filter_excludes(filters.setter, setter):
                    continue
                setter_node = TreeNode(
                    id=f"setter-{platform}-{channel}-{setter}", name=setter, level='setter'
                )

                for tier, (total, showed, closed) in tiers.items():
                    if _filter_excludes(filters.capital_tier, tier):
                        continue
                    tier_node = TreeNode(
                        id=f"tier-{platform}-{channel}-{setter}-{tier}", name=tier,
                        level='capital_tier', total=total, showed=showed, closed=closed,
                    )
                    tier_node.finalize()
                    setter_node.add(tier_node)
                    if filters.show_capital_tiers:
                        setter_node.children.append(tier_node)

                if setter_node.total == 0:
                    continue
                setter_node.children.sort(key=lambda n: -n.total)
                setter_node.finalize()
                channel_node.children.append(setter_node)
                channel_node.add(setter_node)

            if not channel_node.children:
                continue
            channel_node.children.sort(key=lambda n: -n.total)
            channel_node.finalize()
            platform_node.children.append(channel_node)
            platform_node.add(channel_node)

        if not platform_node.children:
            continue
        platform_node.children.sort(key=_channel_sort_key)
        platform_node.finalize()
        tree.append(platform_node)

    tree.sort(key=_platform_sort_key)
    return tree


def get_attribution_options(
    events,
    alias_map: Optional[Mapping[str, str]] = None,
    ig_alias_map: Optional[Mapping[str, str]] = None
) -> Dict[str, List[str]]:
    """Sorted filter options per level, placeholders left out."""
    platforms, channels, setters, tiers = set(), set(), set(), set()
    for event in to_records(events):
        if not is_booked(event):
            continue
        platforms.add(get_attribution_platform(event)[0])
        channels.add(get_attribution_channel(event))
        setters.add(get_attribution_setter(event, alias_map, ig_alias_map)[0])
        tiers.add(get_capital_tier(event))

    return {
        'platforms': sorted(platforms - {NO_ATTRIBUTION}),
        'channels': sorted(channels - {NO_CHANNEL}),
        'setters': sorted(setters - {UNATTRIBUTED_SETTER}),
        'capital_tiers': sorted(tiers - {UNKNOWN_CAPITAL_TIER}),
    }


def summarize_attribution(events) -> Dict:
    """Coverage of platform attribution over booked events."""
    booked = [e for e in to_records(events) if is_booked(e)]
    total = len(booked)
    with_attribution = sum(1 for e in booked if get_attribution_platform(e)[0] != NO_ATTRIBUTION)
    return {
        'with_attribution': with_attribution,
        'without_attribution': total - with_attribution,
        'coverage_percent': _pct(with_attribution, total),
        'total': total,
    }


def flatten_tree(nodes: Sequence[TreeNode], depth: int = 0) -> pd.DataFrame:
    """Depth-first rows for st.dataframe display."""
    rows = []

    def walk(node: TreeNode, level: int, path: Tuple[str, ...]):
        rows.append({
            'id': node.id,
            'level': node.level,
            'depth': level,
            'name': ('    ' * level) + node.name,
            'path': ' › '.join(path + (node.name,)),
            'total': node.total,
            'showed': node.showed,
            'closed': node.closed,
            'show_rate': node.show_rate,
            'close_rate': node.close_rate,
            'attribution_source': node.attribution_source,
        })
        for child in node.children:
            walk(child, level + 1, path + (node.name,))

    for node in nodes:
        walk(node, depth, ())

    return pd.DataFrame(rows)
