"""Shared fixtures: a small week of calls for one organization."""

from datetime import datetime, timezone

import pandas as pd
import pytest

# Wednesday noon in New York
NOW = datetime(2024, 5, 15, 16, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def events_df():
    return pd.DataFrame([
        {
            'id': 'e1', 'scheduled_at': '2024-05-10T15:00:00Z', 'booked_at': '2024-05-01T12:00:00Z',
            'closer_id': 'c1', 'closer_name': 'Sam', 'closer_email': 'sam@acme.com',
            'event_name': 'Strategy Call (30 min)', 'call_status': 'completed',
            'event_outcome': 'closed', 'pcf_submitted': True, 'setter_name': 'jane d',
            'booking_metadata': {'utm_platform': 'ig', 'utm_channel': 'stories'},
            'booking_responses': {'capital_question': '$10k+'},
            'close_custom_fields': {},
        },
        {
            'id': 'e2', 'scheduled_at': '2024-05-11T15:00:00Z', 'booked_at': None,
            'closer_id': None, 'closer_name': 'Sam', 'closer_email': 'sam@acme.com',
            'event_name': 'Discovery Call', 'call_status': 'completed',
            'event_outcome': 'showed_offer_no_close', 'pcf_submitted': True, 'setter_name': None,
            'booking_metadata': {'utm_setter': 'Jane Doe'},
            'booking_responses': {'quiz_email': 'lead@example.com'},
            'close_custom_fields': {},
        },
        {
            'id': 'e3', 'scheduled_at': '2024-05-12T15:00:00Z', 'booked_at': None,
            'closer_id': 'c2', 'closer_name': 'Alex', 'closer_email': None,
            'event_name': 'Strategy Call', 'call_status': 'no_show',
            'event_outcome': 'no_show', 'pcf_submitted': False, 'setter_name': 'Mark',
            'booking_metadata': {},
            'booking_responses': {},
            'close_custom_fields': {'lead_type': ' vip '},
        },
        {
            'id': 'e4', 'scheduled_at': '2024-05-13T15:00:00Z', 'booked_at': None,
            'closer_id': 'c2', 'closer_name': 'Alex', 'closer_email': None,
            'event_name': 'Strategy Call', 'call_status': 'canceled',
            'event_outcome': None, 'pcf_submitted': False, 'setter_name': None,
            'booking_metadata': {},
            'booking_responses': {},
            'close_custom_fields': {},
        },
        {
            'id': 'e5', 'scheduled_at': '2024-05-20T15:00:00Z', 'booked_at': None,
            'closer_id': 'c1', 'closer_name': 'Sam', 'closer_email': 'sam@acme.com',
            'event_name': 'Strategy Call', 'call_status': 'scheduled',
            'event_outcome': None, 'pcf_submitted': False, 'setter_name': 'Jane Doe',
            'booking_metadata': {},
            'booking_responses': {},
            'close_custom_fields': {},
        },
    ])


@pytest.fixture
def payments_df():
    return pd.DataFrame([
        {'id': 'p1', 'event_id': 'e1', 'amount': 3000.0, 'refund_amount': 500.0},
        {'id': 'p2', 'event_id': 'e2', 'amount': 1000.0, 'refund_amount': None},
        {'id': 'p3', 'event_id': None, 'amount': 999.0, 'refund_amount': 0.0},
    ])


@pytest.fixture
def pcfs_df():
    return pd.DataFrame([
        {'event_id': 'e1', 'closer_name': 'Sam', 'cash_collected': 4000.0},
    ])


@pytest.fixture
def alias_map():
    return {'jane d': 'Jane Doe'}
