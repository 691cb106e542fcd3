# utils/sales_ops/formula_engine.py
"""
Calculated Field Formula Engine

Evaluates user-defined formulas over dataset records, e.g.:

    amount * 0.1                              (expression)
    SUM(amount)  AVG(amount)  COUNT(*)        (aggregation)
    COUNT(status = "paid")                    (aggregation, counted if true)
    SUM(amount WHERE status = "completed")    (aggregation, filtered)
    DAYS_SINCE(created_at)                    (date_diff)
    IF(amount > 1000, "High", "Low")          (conditional)
    CASE(amount, [0, 100, "Bronze"], [100, null, "Gold"])

Pipeline: tokenize() -> _Parser builds a small AST -> _Evaluator walks it
against one record (and, for aggregations, the whole record set).

Time scopes restrict the records an aggregation sees:
all, today, week (Monday start), month, mtd, quarter, year, ytd,
rolling_7d, rolling_30d.

CHANGELOG:
- v1.1.0: Aggregation arguments are evaluated per record, so SUM(amount)
          sums the field across records and SUM(a * b) works too
- v1.0.0: Initial tokenizer, evaluator, circular dependency check
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .constants import DEFAULT_TIMEZONE
from .fields import is_missing, to_timestamp, utc_now

logger = logging.getLogger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

FORMULA_TYPES = ['expression', 'aggregation', 'date_diff', 'conditional']

TIME_SCOPES = [
    'all', 'today', 'week', 'month', 'mtd', 'quarter',
    'year', 'ytd', 'rolling_7d', 'rolling_30d',
]

AGGREGATE_FUNCTIONS = {'SUM', 'AVG', 'COUNT', 'MIN', 'MAX'}
DATE_FUNCTIONS = {'DAYS_SINCE', 'DAYS_BETWEEN', 'MONTHS_SINCE', 'HOURS_SINCE'}
SCALAR_FUNCTIONS = {'IF', 'CASE', 'COALESCE', 'ABS', 'ROUND', 'FLOOR', 'CEIL'}
FUNCTIONS = AGGREGATE_FUNCTIONS | DATE_FUNCTIONS | SCALAR_FUNCTIONS

LITERALS = {'null': None, 'true': True, 'false': False}

OPERATORS = '+-*/%'
COMPARISONS = {'=', '==', '!=', '<', '>', '<=', '>='}


class FormulaError(ValueError):
    """Raised for formulas that cannot be tokenized or parsed"""


# =============================================================================
# CALCULATED FIELD DEFINITION
# =============================================================================

@dataclass
class CalculatedField:
    field_slug: str
    formula: str
    formula_type: str = 'expression'
    display_name: str = ''
    time_scope: str = 'all'
    is_active: bool = True
    id: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping) -> 'CalculatedField':
        return cls(
            id=row.get('id'),
            field_slug=row['field_slug'],
            formula=row.get('formula') or '',
            formula_type=row.get('formula_type') or 'expression',
            display_name=row.get('display_name') or row['field_slug'],
            time_scope=row.get('time_scope') or 'all',
            is_active=bool(row.get('is_active', True)),
        )


# =============================================================================
# TOKENIZER
# =============================================================================

@dataclass(frozen=True)
class Token:
    type: str
    value: Any


def tokenize(formula: str) -> List[Token]:
    """
    Split a formula into tokens.

    Square brackets are ignored so CASE ranges can be written as
    [low, high, label] groups.

    Raises:
        FormulaError: unterminated string or unexpected character
    """
    tokens = []
    i = 0
    n = len(formula or '')

    while i < n:
        char = formula[i]

        if char.isspace() or char in '[]':
            i += 1
            continue

        if char.isdigit() or (char == '.' and i + 1 < n and formula[i + 1].isdigit()):
            start = i
            while i < n and (formula[i].isdigit() or formula[i] == '.'):
                i += 1
            raw = formula[start:i]
            try:
                tokens.append(Token('NUMBER', float(raw)))
            except ValueError:
                raise FormulaError(f"Invalid number: {raw}")
            continue

        if char in ('"', "'"):
            end = formula.find(char, i + 1)
            if end == -1:
                raise FormulaError("Unterminated string")
            tokens.append(Token('STRING', formula[i + 1:end]))
            i = end + 1
            continue

        if char in OPERATORS:
            tokens.append(Token('OPERATOR', char))
            i += 1
            continue

        if char in '<>=!':
            op = char
            if i + 1 < n and formula[i + 1] == '=':
                op += '='
            if op == '!':
                raise FormulaError("Unexpected character: !")
            tokens.append(Token('COMPARISON', op))
            i += len(op)
            continue

        if char == '(':
            tokens.append(Token('LPAREN', char))
            i += 1
            continue
        if char == ')':
            tokens.append(Token('RPAREN', char))
            i += 1
            continue
        if char == ',':
            tokens.append(Token('COMMA', char))
            i += 1
            continue

        if char.isalpha() or char == '_':
            start = i
            while i < n and (formula[i].isalnum() or formula[i] == '_'):
                i += 1
            ident = formula[start:i]
            next_char = formula[i:].lstrip()[:1]
            if next_char == '(' and ident.upper() in FUNCTIONS:
                tokens.append(Token('FUNCTION', ident.upper()))
            else:
                tokens.append(Token('FIELD', ident))
            continue

        raise FormulaError(f"Unexpected character: {char}")

    return tokens


# =============================================================================
# PARSER
# =============================================================================

# AST nodes are tuples: ('num', v) ('str', v) ('lit', v) ('field', name)
# ('neg', node) ('bin', op, left, right) ('cmp', op, left, right)
# ('call', name, [args]) ('agg', name, arg_or_None, where_or_None)

class _Parser:
    """Recursive-descent parser, precedence: comparison < + - < * / %"""

    def __init__(self, tokens: Sequence[Token]):
        self.tokens = list(tokens)
        self.pos = 0

    def parse(self):
        if not self.tokens:
            raise FormulaError("Formula is empty")
        node = self._comparison()
        if self.pos < len(self.tokens):
            raise FormulaError(f"Unexpected token: {self.tokens[self.pos].value}")
        return node

    # -- helpers --------------------------------------------------------------

    def _peek(self) -> Optional[Token]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self) -> Token:
        token = self._peek()
        if token is None:
            raise FormulaError("Unexpected end of formula")
        self.pos += 1
        return token

    def _expect(self, token_type: str) -> Token:
        token = self._next()
        if token.type != token_type:
            raise FormulaError(f"Expected {token_type}, got {token.value}")
        return token

    # -- grammar --------------------------------------------------------------

    def _comparison(self):
        left = self._additive()
        token = self._peek()
        if token is not None and token.type == 'COMPARISON':
            self.pos += 1
            right = self._additive()
            return ('cmp', token.value, left, right)
        return left

    def _additive(self):
        node = self._term()
        while True:
            token = self._peek()
            if token is None or token.type != 'OPERATOR' or token.value not in '+-':
                return node
            self.pos += 1
            node = ('bin', token.value, node, self._term())

    def _term(self):
        node = self._unary()
        while True:
            token = self._peek()
            if token is None or token.type != 'OPERATOR' or token.value not in '*/%':
                return node
            self.pos += 1
            node = ('bin', token.value, node, self._unary())

    def _unary(self):
        token = self._peek()
        if token is not None and token.type == 'OPERATOR' and token.value in '+-':
            self.pos += 1
            operand = self._unary()
            return ('neg', operand) if token.value == '-' else operand
        return self._primary()

    def _primary(self):
        token = self._next()

        if token.type == 'NUMBER':
            return ('num', token.value)
        if token.type == 'STRING':
            return ('str', token.value)
        if token.type == 'FIELD':
            if token.value.lower() in LITERALS:
                return ('lit', LITERALS[token.value.lower()])
            return ('field', token.value)
        if token.type == 'LPAREN':
            node = self._comparison()
            self._expect('RPAREN')
            return node
        if token.type == 'FUNCTION':
            if token.value in AGGREGATE_FUNCTIONS:
                return self._aggregate(token.value)
            return ('call', token.value, self._arguments())

        raise FormulaError(f"Unexpected token: {token.value}")

    def _arguments(self) -> List:
        self._expect('LPAREN')
        args = []
        if self._peek() is not None and self._peek().type == 'RPAREN':
            self.pos += 1
            return args
        while True:
            args.append(self._comparison())
            token = self._next()
            if token.type == 'RPAREN':
                return args
            if token.type != 'COMMA':
                raise FormulaError(f"Expected , or ), got {token.value}")

    def _aggregate(self, name: str):
        self._expect('LPAREN')
        token = self._peek()

        if token is not None and token.type == 'OPERATOR' and token.value == '*':
            self.pos += 1
            self._expect('RPAREN')
            return ('agg', name, None, None)
        if token is not None and token.type == 'RPAREN':
            self.pos += 1
            return ('agg', name, None, None)

        arg = self._comparison()
        where = None
        token = self._peek()
        if token is not None and token.type == 'FIELD' and token.value.upper() == 'WHERE':
            self.pos += 1
            where = self._comparison()
        self._expect('RPAREN')
        return ('agg', name, arg, where)


def parse_formula(formula: str):
    return _Parser(tokenize(formula)).parse()


# =============================================================================
# EVALUATOR
# =============================================================================

def _to_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if is_missing(value):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if math.isnan(number) else number


def _is_numeric(value: Any) -> bool:
    if isinstance(value, bool) or is_missing(value):
        return False
    try:
        float(value)
        return True
    except (TypeError, ValueError):
        return False


def _truthy(value: Any) -> bool:
    if is_missing(value):
        return False
    if isinstance(value, str):
        return value.strip().lower() not in ('false', '0')
    return bool(value)


def _round_half_up(value: float, digits: int = 0) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


class _Evaluator:

    def __init__(self, record: Mapping, all_records: Optional[Sequence[Mapping]], now: pd.Timestamp):
        self.record = record
        self.all_records = all_records
        self.now = now

    def eval(self, node, record: Optional[Mapping] = None):
        record = self.record if record is None else record
        kind = node[0]

        if kind in ('num', 'str', 'lit'):
            return node[1]
        if kind == 'field':
            return record.get(node[1])
        if kind == 'neg':
            return -_to_number(self.eval(node[1], record))
        if kind == 'bin':
            return self._binary(node[1], self.eval(node[2], record), self.eval(node[3], record))
        if kind == 'cmp':
            return self._compare(node[1], self.eval(node[2], record), self.eval(node[3], record))
        if kind == 'call':
            return self._call(node[1], node[2], record)
        if kind == 'agg':
            return self._aggregate(node[1], node[2], node[3], record)
        raise FormulaError(f"Unknown node: {kind}")

    @staticmethod
    def _binary(op: str, left: Any, right: Any) -> float:
        a, b = _to_number(left), _to_number(right)
        if op == '+':
            return a + b
        if op == '-':
            return a - b
        if op == '*':
            return a * b
        if op == '/':
            return a / b if b != 0 else 0.0
        if op == '%':
            return math.fmod(a, b) if b != 0 else 0.0
        raise FormulaError(f"Unknown operator: {op}")

    @staticmethod
    def _compare(op: str, left: Any, right: Any) -> bool:
        if _is_numeric(left) and _is_numeric(right):
            a, b = float(left), float(right)
        else:
            a = '' if is_missing(left) else str(left)
            b = '' if is_missing(right) else str(right)
            if op in ('=', '==', '!='):
                a, b = a.lower(), b.lower()

        if op in ('=', '=='):
            return a == b
        if op == '!=':
            return a != b
        if op == '<':
            return a < b
        if op == '>':
            return a > b
        if op == '<=':
            return a <= b
        if op == '>=':
            return a >= b
        raise FormulaError(f"Unknown comparison: {op}")

    def _call(self, name: str, arg_nodes: List, record: Mapping):
        if name == 'IF':
            if len(arg_nodes) < 2:
                raise FormulaError("IF needs a condition and a value")
            if _truthy(self.eval(arg_nodes[0], record)):
                return self.eval(arg_nodes[1], record)
            return self.eval(arg_nodes[2], record) if len(arg_nodes) > 2 else None

        args = [self.eval(node, record) for node in arg_nodes]

        if name == 'COALESCE':
            return next((a for a in args if not is_missing(a)), None)
        if name == 'ABS':
            return abs(_to_number(args[0] if args else None))
        if name == 'ROUND':
            digits = int(_to_number(args[1])) if len(args) > 1 else 0
            return _round_half_up(_to_number(args[0] if args else None), digits)
        if name == 'FLOOR':
            return float(math.floor(_to_number(args[0] if args else None)))
        if name == 'CEIL':
            return float(math.ceil(_to_number(args[0] if args else None)))
        if name == 'CASE':
            return self._case(args)
        if name in DATE_FUNCTIONS:
            return self._date_function(name, args)
        raise FormulaError(f"Unknown function: {name}")

    @staticmethod
    def _case(args: List):
        """CASE(value, low, high, label, ...): first low <= value < high wins, null = open end."""
        if not args:
            return None
        value = _to_number(args[0])
        ranges = args[1:]
        for i in range(0, len(ranges) - 2, 3):
            low, high, label = ranges[i], ranges[i + 1], ranges[i + 2]
            if (low is None or value >= _to_number(low)) and (high is None or value < _to_number(high)):
                return label
        return None

    def _date_function(self, name: str, args: List) -> Optional[float]:
        first = to_timestamp(args[0]) if args else None
        if first is None:
            return None

        if name == 'DAYS_BETWEEN':
            second = to_timestamp(args[1]) if len(args) > 1 else None
            if second is None:
                return None
            return float(math.floor((second - first) / timedelta(days=1)))

        if name == 'DAYS_SINCE':
            return float(math.floor((self.now - first) / timedelta(days=1)))
        if name == 'HOURS_SINCE':
            return float(math.floor((self.now - first) / timedelta(hours=1)))
        if name == 'MONTHS_SINCE':
            return float((self.now.year - first.year) * 12 + (self.now.month - first.month))
        raise FormulaError(f"Unknown function: {name}")

    def _aggregate(self, name: str, arg, where, record: Mapping):
        # Outside an aggregation context the argument is the record's own value
        if self.all_records is None:
            if name == 'COUNT':
                return 1.0
            return _to_number(self.eval(arg, record)) if arg is not None else 0.0

        rows = list(self.all_records)
        if where is not None:
            rows = [r for r in rows if _truthy(self.eval(where, r))]

        if name == 'COUNT':
            if arg is None:
                return float(len(rows))
            if arg[0] == 'field':
                return float(sum(1 for r in rows if not is_missing(r.get(arg[1]))))
            return float(sum(1 for r in rows if _truthy(self.eval(arg, r))))

        if arg is None:
            raise FormulaError(f"{name} needs a field")
        values = [_to_number(self.eval(arg, r)) for r in rows]

        if name == 'SUM':
            return float(sum(values))
        if name == 'AVG':
            return float(sum(values) / len(values)) if values else 0.0
        if name == 'MIN':
            return float(min(values)) if values else 0.0
        if name == 'MAX':
            return float(max(values)) if values else 0.0
        raise FormulaError(f"Unknown aggregation: {name}")


def evaluate_formula(
    formula: str,
    record: Optional[Mapping] = None,
    all_records: Optional[Sequence[Mapping]] = None,
    now: Optional[datetime] = None
):
    """
    Evaluate a formula against one record.

    Raises:
        FormulaError: the formula is invalid
    """
    ast = parse_formula(formula)
    return _Evaluator(record or {}, all_records, utc_now(now)).eval(ast)


# =============================================================================
# TIME SCOPES
# =============================================================================

def get_time_scope_start(
    time_scope: str,
    now: Optional[datetime] = None,
    tz: str = DEFAULT_TIMEZONE
) -> Optional[pd.Timestamp]:
    """Start of the scope window in UTC, or None for 'all' / unknown scopes."""
    local_now = utc_now(now).tz_convert(tz)
    today = local_now.normalize()

    if time_scope == 'today':
        start = today
    elif time_scope == 'week':
        start = today - pd.Timedelta(days=today.weekday())
    elif time_scope in ('month', 'mtd'):
        start = today.replace(day=1)
    elif time_scope == 'quarter':
        quarter_month = 3 * ((today.month - 1) // 3) + 1
        start = today.replace(month=quarter_month, day=1)
    elif time_scope in ('year', 'ytd'):
        start = today.replace(month=1, day=1)
    elif time_scope == 'rolling_7d':
        start = local_now - pd.Timedelta(days=7)
    elif time_scope == 'rolling_30d':
        start = local_now - pd.Timedelta(days=30)
    else:
        return None

    return start.tz_convert('UTC')


def filter_by_time_scope(
    records: Sequence[Mapping],
    time_scope: str,
    date_field: str = 'created_at',
    now: Optional[datetime] = None,
    tz: str = DEFAULT_TIMEZONE
) -> List[Mapping]:
    """Keep records whose date_field falls inside the scope; undated records drop out."""
    start = get_time_scope_start(time_scope, now, tz)
    if start is None:
        return list(records)

    kept = []
    for record in records:
        ts = to_timestamp(record.get(date_field))
        if ts is not None and ts >= start:
            kept.append(record)
    return kept


# =============================================================================
# PUBLIC API
# =============================================================================

def calculate_field_value(
    calc_field: CalculatedField,
    record: Mapping,
    all_records: Optional[Sequence[Mapping]] = None,
    now: Optional[datetime] = None
):
    """Value of one calculated field for a record; None when the formula fails."""
    try:
        return evaluate_formula(calc_field.formula, record, all_records, now)
    except FormulaError as e:
        logger.error(f"Error calculating field {calc_field.field_slug}: {e}")
        return None


def calculate_aggregations(
    fields: Sequence[CalculatedField],
    records: Sequence[Mapping],
    date_field: str = 'created_at',
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """Evaluate every active aggregation field over its time-scoped records."""
    result = {}
    for calc_field in fields:
        if calc_field.formula_type != 'aggregation' or not calc_field.is_active:
            continue
        scoped = filter_by_time_scope(records, calc_field.time_scope, date_field, now)
        result[calc_field.field_slug] = calculate_field_value(calc_field, {}, scoped, now)
    return result


def calculate_all_fields(
    fields: Sequence[CalculatedField],
    record: Mapping,
    all_records: Optional[Sequence[Mapping]] = None,
    date_field: str = 'created_at',
    now: Optional[datetime] = None
) -> Dict[str, Any]:
    """
    Evaluate all active fields for one record.

    Fields are evaluated in dependency order so a formula may reference
    another calculated field by slug. Fields in a cycle evaluate to None.
    """
    active = [f for f in fields if f.is_active]
    by_slug = {f.field_slug: f for f in active}
    result: Dict[str, Any] = {}
    working = dict(record)

    for slug in _evaluation_order(active):
        calc_field = by_slug[slug]
        if calc_field.formula_type == 'aggregation' and all_records is not None:
            scoped = filter_by_time_scope(all_records, calc_field.time_scope, date_field, now)
            value = calculate_field_value(calc_field, {}, scoped, now)
        else:
            value = calculate_field_value(calc_field, working, all_records, now)
        result[slug] = value
        working[slug] = value

    for slug in by_slug:
        result.setdefault(slug, None)
    return result


# =============================================================================
# DEPENDENCIES & VALIDATION
# =============================================================================

def extract_field_references(formula: str) -> List[str]:
    try:
        tokens = tokenize(formula)
    except FormulaError:
        return []
    return [
        t.value for t in tokens
        if t.type == 'FIELD' and t.value.lower() not in LITERALS and t.value.upper() != 'WHERE'
    ]


def _dependency_graph(fields: Sequence[CalculatedField]) -> Dict[str, List[str]]:
    return {f.field_slug: extract_field_references(f.formula) for f in fields}


def _evaluation_order(fields: Sequence[CalculatedField]) -> List[str]:
    """Topological order over calculated-field references; cyclic fields are left out."""
    graph = _dependency_graph(fields)
    order: List[str] = []
    state: Dict[str, str] = {}

    def visit(node: str) -> bool:
        if state.get(node) == 'done':
            return True
        if state.get(node) == 'active':
            return False
        state[node] = 'active'
        ok = all(visit(dep) for dep in graph[node] if dep in graph)
        state[node] = 'done' if ok else 'cyclic'
        if ok:
            order.append(node)
        return ok

    for slug in graph:
        if slug not in state:
            visit(slug)
    return order


def detect_circular_dependency(
    fields: Sequence[CalculatedField],
    new_field: Optional[CalculatedField] = None
) -> Tuple[bool, List[str]]:
    """
    Depth-first search for reference cycles among calculated fields.

    Returns:
        (has_cycle, cycle path), e.g. (True, ['a', 'b', 'a'])
    """
    graph = _dependency_graph(fields)
    if new_field is not None:
        graph[new_field.field_slug] = extract_field_references(new_field.formula)

    visited = set()

    def dfs(node: str, path: List[str]) -> Optional[List[str]]:
        if node in path:
            return path[path.index(node):] + [node]
        if node in visited:
            return None
        visited.add(node)
        for neighbor in graph.get(node, []):
            if neighbor in graph:
                cycle = dfs(neighbor, path + [node])
                if cycle:
                    return cycle
        return None

    for node in graph:
        visited.clear()
        cycle = dfs(node, [])
        if cycle:
            return True, cycle
    return False, []


def validate_formula(
    formula: str,
    formula_type: str,
    existing_fields: Optional[Sequence[CalculatedField]] = None,
    current_field_slug: Optional[str] = None
) -> Tuple[bool, Optional[str]]:
    """
    Check a formula before saving it.

    Returns:
        (is_valid, error message or None)
    """
    try:
        tokens = tokenize(formula)
    except FormulaError as e:
        return False, str(e)

    if not tokens:
        return False, "Formula is empty"

    depth = 0
    for token in tokens:
        if token.type == 'LPAREN':
            depth += 1
        elif token.type == 'RPAREN':
            depth -= 1
        if depth < 0:
            return False, "Unbalanced parentheses"
    if depth != 0:
        return False, "Unbalanced parentheses"

    if formula_type == 'aggregation' and not any(
        t.type == 'FUNCTION' and t.value in AGGREGATE_FUNCTIONS for t in tokens
    ):
        return False, "Aggregation formula must include SUM, AVG, COUNT, MIN, or MAX"

    if formula_type == 'date_diff' and not any(
        t.type == 'FUNCTION' and t.value in DATE_FUNCTIONS for t in tokens
    ):
        return False, "Date formula must include a date function (DAYS_SINCE, DAYS_BETWEEN, etc.)"

    try:
        _Parser(tokens).parse()
    except FormulaError as e:
        return False, str(e)

    if existing_fields and current_field_slug:
        others = [f for f in existing_fields if f.field_slug != current_field_slug]
        has_cycle, cycle = detect_circular_dependency(
            others, CalculatedField(field_slug=current_field_slug, formula=formula)
        )
        if has_cycle:
            return False, f"Circular dependency detected: {' → '.join(cycle)}"

    return True, None
