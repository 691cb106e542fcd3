"""Tests for the calculated field formula engine."""

from datetime import datetime, timezone

import pandas as pd
import pytest

from utils.sales_ops.formula_engine import (
    CalculatedField, FormulaError, calculate_aggregations, calculate_all_fields,
    detect_circular_dependency, evaluate_formula, extract_field_references,
    filter_by_time_scope, get_time_scope_start, validate_formula,
)

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)

RECORDS = [
    {'amount': 100, 'status': 'paid', 'created_at': '2024-05-02T12:00:00Z'},
    {'amount': 300, 'status': 'PAID', 'created_at': '2024-05-14T12:00:00Z'},
    {'amount': 50, 'status': 'pending', 'created_at': '2024-04-20T12:00:00Z'},
]


class TestExpressions:

    def test_arithmetic_precedence(self):
        assert evaluate_formula("(2 + 3) * 4") == 20
        assert evaluate_formula("2 + 3 * 4") == 14
        assert evaluate_formula("amount * 0.1", {'amount': 250}) == pytest.approx(25.0)

    def test_division_by_zero_is_zero(self):
        assert evaluate_formula("amount / 0", {'amount': 10}) == 0.0

    def test_missing_field_counts_as_zero(self):
        assert evaluate_formula("amount + 5", {}) == 5.0

    def test_if_and_case(self):
        assert evaluate_formula('IF(amount > 1000, "High", "Low")', {'amount': 1500}) == "High"
        assert evaluate_formula('IF(amount > 1000, "High", "Low")', {'amount': 10}) == "Low"

        case = 'CASE(amount, [0, 100, "Bronze"], [100, null, "Gold"])'
        assert evaluate_formula(case, {'amount': 50}) == "Bronze"
        assert evaluate_formula(case, {'amount': 150}) == "Gold"
        assert evaluate_formula(case, {'amount': -5}) is None

    def test_round_half_up(self):
        assert evaluate_formula("ROUND(2.5)") == 3.0
        assert evaluate_formula("ROUND(3.5)") == 4.0

    def test_coalesce(self):
        assert evaluate_formula("COALESCE(discount, 5)", {'discount': None}) == 5.0

    def test_string_comparison_ignores_case(self):
        assert evaluate_formula('status = "paid"', {'status': 'PAID'}) is True
        assert evaluate_formula('deal_closed = true', {'deal_closed': True}) is True

    def test_days_since(self):
        record = {'created_at': '2024-05-05T00:00:00Z'}
        assert evaluate_formula("DAYS_SINCE(created_at)", record, now=NOW) == 10.0
        assert evaluate_formula("DAYS_SINCE(missing)", record, now=NOW) is None

    def test_days_between(self):
        record = {'a': '2024-05-01T00:00:00Z', 'b': '2024-05-04T06:00:00Z'}
        assert evaluate_formula("DAYS_BETWEEN(a, b)", record) == 3.0

    def test_invalid_formula_raises(self):
        with pytest.raises(FormulaError):
            evaluate_formula('"unterminated')
        with pytest.raises(FormulaError):
            evaluate_formula("amount $ 2")
        with pytest.raises(FormulaError):
            evaluate_formula("2 +")


class TestAggregations:

    def test_sum_avg_count(self):
        assert evaluate_formula("SUM(amount)", all_records=RECORDS) == 450.0
        assert evaluate_formula("AVG(amount)", all_records=RECORDS) == 150.0
        assert evaluate_formula("COUNT(*)", all_records=RECORDS) == 3.0
        assert evaluate_formula("MAX(amount)", all_records=RECORDS) == 300.0

    def test_count_of_condition(self):
        assert evaluate_formula('COUNT(status = "paid")', all_records=RECORDS) == 2.0

    def test_where_clause(self):
        assert evaluate_formula('SUM(amount WHERE status = "pending")', all_records=RECORDS) == 50.0

    def test_aggregate_of_expression(self):
        assert evaluate_formula("SUM(amount * 2)", all_records=RECORDS) == 900.0

    def test_empty_set(self):
        assert evaluate_formula("AVG(amount)", all_records=[]) == 0.0

    def test_without_record_set_uses_own_value(self):
        assert evaluate_formula("SUM(amount)", {'amount': 5}) == 5.0


class TestTimeScopes:

    def test_scope_starts(self):
        assert get_time_scope_start('all', NOW) is None
        assert get_time_scope_start('mtd', NOW) == pd.Timestamp('2024-05-01 04:00', tz='UTC')
        # Wednesday May 15 -> Monday May 13, New York midnight
        assert get_time_scope_start('week', NOW) == pd.Timestamp('2024-05-13 04:00', tz='UTC')
        assert get_time_scope_start('rolling_7d', NOW) == pd.Timestamp('2024-05-08 12:00', tz='UTC')

    def test_filter_drops_undated(self):
        records = RECORDS + [{'amount': 1}]
        assert len(filter_by_time_scope(records, 'mtd', now=NOW)) == 2
        assert len(filter_by_time_scope(records, 'all', now=NOW)) == 4

    def test_calculate_aggregations(self):
        fields = [
            CalculatedField('mtd_revenue', 'SUM(amount)', 'aggregation', time_scope='mtd'),
            CalculatedField('all_revenue', 'SUM(amount)', 'aggregation'),
            CalculatedField('double', 'amount * 2', 'expression'),
            CalculatedField('off', 'SUM(amount)', 'aggregation', is_active=False),
        ]
        assert calculate_aggregations(fields, RECORDS, now=NOW) == {
            'mtd_revenue': 400.0,
            'all_revenue': 450.0,
        }


class TestCalculateAllFields:

    def test_dependency_order(self):
        fields = [
            CalculatedField('with_tax', 'total * 1.5'),
            CalculatedField('total', 'price * qty'),
        ]
        values = calculate_all_fields(fields, {'price': 10, 'qty': 2})
        assert values['total'] == 20.0
        assert values['with_tax'] == pytest.approx(30.0)

    def test_cycles_evaluate_to_none(self):
        fields = [
            CalculatedField('x', 'y + 1'),
            CalculatedField('y', 'x + 1'),
            CalculatedField('z', '1 + 1'),
        ]
        assert calculate_all_fields(fields, {}) == {'z': 2.0, 'x': None, 'y': None}

    def test_bad_formula_is_none(self):
        values = calculate_all_fields([CalculatedField('bad', 'amount +')], {'amount': 1})
        assert values == {'bad': None}


class TestValidation:

    def test_references(self):
        assert extract_field_references('SUM(amount WHERE status = "x")') == ['amount', 'status']
        assert extract_field_references('IF(a > 1, true, null)') == ['a']

    def test_circular_dependency(self):
        fields = [CalculatedField('a', 'b + 1'), CalculatedField('b', 'a + 1')]
        assert detect_circular_dependency(fields) == (True, ['a', 'b', 'a'])
        assert detect_circular_dependency([CalculatedField('a', '1')]) == (False, [])

    def test_validate_formula(self):
        assert validate_formula("DAYS_SINCE(created_at)", 'date_diff') == (True, None)
        assert validate_formula("SUM(amount", 'aggregation') == (False, "Unbalanced parentheses")
        assert validate_formula("", 'expression') == (False, "Formula is empty")

        ok, error = validate_formula("amount * 2", 'aggregation')
        assert not ok
        assert "SUM, AVG, COUNT" in error

        ok, error = validate_formula("created_at", 'date_diff')
        assert not ok
        assert "date function" in error

    def test_validate_rejects_new_cycle(self):
        existing = [CalculatedField('a', 'b + 1'), CalculatedField('b', '2')]
        ok, error = validate_formula("a * 2", 'expression', existing, current_field_slug='b')
        assert not ok
        assert error.startswith("Circular dependency detected")
