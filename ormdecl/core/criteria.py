"""Compilation of search criteria into parameterized SQL boolean expressions.

Criteria are an ordered sequence of AND-groups which are OR-ed together. A
group is either a flat list of (column, operator, parameter) triples

    ['id', 'ge', 5, 'id', 'le', 10]

or a list of tuples, where the null checks may omit the parameter

    [('id', 'ge', 5), ('val', 'notnull')]

Predicates built from column wrappers (see `datapath`) may stand in for a
group. Two directive groups, `['limit by', offset, count]` and
`['order by', column, ...]`, are not predicates; `split_criteria` separates
them before compilation.

Parameters are bound with `?` placeholders except for `Raw` expressions, which
are spliced into the SQL text verbatim. `Raw` is the only way caller text
reaches the SQL unescaped, and the caller must trust it. A sub-select for an
`in`/`notin` test must be given as `Raw`; a plain string there is rejected.
"""

import logging

from .errors import CriteriaError

logger = logging.getLogger(__name__)

PLACEHOLDER = '?'

OPERATORS = {
    'eq': '=',
    'ne': '!=',
    'gt': '>',
    'lt': '<',
    'ge': '>=',
    'le': '<=',
    'isnull': 'IS NULL',
    'notnull': 'IS NOT NULL',
    'in': 'IN',
    'notin': 'NOT IN',
    'like': 'LIKE',
    'notlike': 'NOT LIKE',
}
"""Supported operators and their SQL spelling"""

_symbolic_operators = {
    '=': 'eq', '==': 'eq', '!=': 'ne', '<>': 'ne', '>': 'gt', '<': 'lt', '>=': 'ge', '<=': 'le',
}

NULL_OPERATORS = {'isnull', 'notnull'}
SET_OPERATORS = {'in', 'notin'}

LIMIT_BY = 'limitby'
ORDER_BY = 'orderby'


class Raw (object):
    """A caller-trusted SQL expression spliced verbatim into a statement.
    """
    def __init__(self, sql):
        if not isinstance(sql, str):
            raise TypeError("raw SQL must be a string")
        self.sql = sql

    def __repr__(self):
        return "raw(%r)" % self.sql

    def __str__(self):
        return self.sql

    def __eq__(self, other):
        return isinstance(other, Raw) and other.sql == self.sql

    def __hash__(self):
        return hash((Raw, self.sql))


raw = Raw


def column_ref(column):
    """Returns the reference of a column given by name or by column wrapper."""
    if isinstance(column, str):
        return column
    ref = getattr(column, 'ref', None)
    if isinstance(ref, str):
        return ref
    raise CriteriaError("Criteria column must be a name or a column wrapper, not %r" % (column,))


def _normalize_keyword(word):
    return str(word).lower().replace(' ', '').replace('_', '')


def normalize_operator(op):
    """Returns the canonical operator name for `op` or raises CriteriaError."""
    if not isinstance(op, str):
        raise CriteriaError("Operator must be a string, not %r" % (op,))
    name = _symbolic_operators.get(op.strip()) or _normalize_keyword(op)
    if name not in OPERATORS:
        raise CriteriaError("Unknown operator '%s'" % op)
    return name


class _Predicate (object):
    """Common base class for all predicate types."""

    def and_(self, other):
        """Returns a conjunction predicate.

        :param other: a predicate object.
        :return: a junction predicate object.
        """
        if not isinstance(other, _Predicate):
            raise TypeError("Invalid comparison with object that is not a _Predicate instance.")
        return _ConjunctionPredicate([self, other])

    __and__ = and_

    def or_(self, other):
        """Returns a disjunction predicate.

        :param other: a predicate object.
        :return: a junction predicate object.
        """
        if not isinstance(other, _Predicate):
            raise TypeError("Invalid comparison with object that is not a _Predicate instance.")
        return _DisjunctionPredicate([self, other])

    __or__ = or_

    def negate(self):
        """Returns a negation predicate.

        :return: a negation predicate object.
        """
        return _NegationPredicate(self)

    __invert__ = negate

    def render(self, namer, params):
        """Renders this predicate as SQL text.

        :param namer: function mapping a column reference to its SQL name
        :param params: list to which bound parameters are appended in placeholder order
        :return: the SQL text
        """
        raise NotImplementedError()

    @property
    def terms(self):
        """Number of comparison terms in this predicate."""
        raise NotImplementedError()


class _ComparisonPredicate (_Predicate):
    """Comparison (column operator parameter) predicate"""
    def __init__(self, column, op, param=None):
        super(_ComparisonPredicate, self).__init__()
        self._column = column_ref(column)
        self._op = normalize_operator(op)
        self._param = param
        if self._op in SET_OPERATORS and not isinstance(param, Raw):
            if param is None or isinstance(param, (str, bytes)) or not hasattr(param, '__iter__'):
                raise CriteriaError("Operator '%s' on '%s' requires a set of values or a raw sub-select" % (self._op, column))
            self._param = list(param)

    def __repr__(self):
        return "<%s %r %s %r>" % (type(self).__name__, self._column, self._op, self._param)

    @property
    def column(self):
        return self._column

    @property
    def op(self):
        return self._op

    @property
    def param(self):
        return self._param

    @property
    def terms(self):
        return 1

    def render(self, namer, params):
        name = namer(self._column)
        sqlop = OPERATORS[self._op]
        if self._op in NULL_OPERATORS:
            return "%s %s" % (name, sqlop)
        if self._op in SET_OPERATORS:
            if isinstance(self._param, Raw):
                return "%s %s (%s)" % (name, sqlop, self._param.sql)
            if not self._param:
                # an empty set matches nothing; its negation matches everything
                return "1=0" if self._op == 'in' else "1=1"
            params.extend(self._param)
            return "%s %s (%s)" % (name, sqlop, ", ".join([PLACEHOLDER] * len(self._param)))
        if isinstance(self._param, Raw):
            return "%s %s %s" % (name, sqlop, self._param.sql)
        params.append(self._param)
        return "%s %s %s" % (name, sqlop, PLACEHOLDER)


class _JunctionPredicate (_Predicate):
    """Junction (and/or) of child predicates."""
    def __init__(self, op, operands):
        super(_JunctionPredicate, self).__init__()
        assert operands and hasattr(operands, '__iter__') and len(operands) > 1
        assert all(isinstance(operand, _Predicate) for operand in operands)
        assert isinstance(op, str)
        self._operands = operands
        self._op = op

    @property
    def operands(self):
        return list(self._operands)

    @property
    def terms(self):
        return sum(operand.terms for operand in self._operands)


class _ConjunctionPredicate (_JunctionPredicate):
    """Conjunction (and) of child predicates."""
    def __init__(self, operands):
        super(_ConjunctionPredicate, self).__init__(' AND ', operands)

    def and_(self, other):
        if not isinstance(other, _Predicate):
            raise TypeError("Invalid comparison with object that is not a _Predicate instance.")
        return _ConjunctionPredicate(self._operands + [other])

    __and__ = and_

    def render(self, namer, params):
        return self._op.join(
            "(%s)" % operand.render(namer, params) if isinstance(operand, _JunctionPredicate)
            else operand.render(namer, params)
            for operand in self._operands
        )


class _DisjunctionPredicate (_JunctionPredicate):
    """Disjunction (or) of child predicates."""
    def __init__(self, operands):
        super(_DisjunctionPredicate, self).__init__(' OR ', operands)

    def or_(self, other):
        if not isinstance(other, _Predicate):
            raise TypeError("Invalid comparison with object that is not a _Predicate instance.")
        return _DisjunctionPredicate(self._operands + [other])

    __or__ = or_

    def render(self, namer, params):
        return self._op.join("(%s)" % operand.render(namer, params) for operand in self._operands)


class _NegationPredicate (_Predicate):
    """Negation (not) of a child predicate."""
    def __init__(self, child):
        super(_NegationPredicate, self).__init__()
        assert isinstance(child, _Predicate)
        self._child = child

    @property
    def terms(self):
        return self._child.terms

    def render(self, namer, params):
        return "NOT (%s)" % self._child.render(namer, params)


class Directives (object):
    """Out-of-band `limit by` and `order by` directives of a search.
    """
    def __init__(self, offset=None, count=None, order_by=None):
        self.offset = offset
        self.count = count
        self.order_by = list(order_by or [])

    def __repr__(self):
        return "<%s offset=%r count=%r order_by=%r>" % (type(self).__name__, self.offset, self.count, self.order_by)

    @property
    def limited(self):
        return self.count is not None


def _directive_name(group):
    if isinstance(group, (list, tuple)) and group and isinstance(group[0], str):
        name = _normalize_keyword(group[0])
        if name in (LIMIT_BY, ORDER_BY):
            return name
    return None


def split_criteria(criteria):
    """Separates directive groups from predicate groups.

    :param criteria: iterable of groups, predicates and directive groups
    :return: tuple of (list of groups and predicates, Directives)
    """
    groups = []
    directives = Directives()
    for group in criteria:
        name = _directive_name(group)
        if name == LIMIT_BY:
            args = list(group[1:])
            if len(args) == 1:
                args = [0] + args
            if len(args) != 2:
                raise CriteriaError("'limit by' takes an offset and a count, got %r" % (args,))
            try:
                directives.offset, directives.count = int(args[0]), int(args[1])
            except (TypeError, ValueError) as e:
                raise CriteriaError("'limit by' offset and count must be integers, got %r" % (args,), e)
        elif name == ORDER_BY:
            columns = list(group[1:])
            if not columns:
                raise CriteriaError("'order by' requires at least one column")
            directives.order_by.extend(columns)
        else:
            groups.append(group)
    return groups, directives


def parse_group(group):
    """Parses one AND-group into a list of (column, operator, parameter) triples."""
    if isinstance(group, _Predicate):
        raise CriteriaError("A predicate is not a triple group")
    if not isinstance(group, (list, tuple)):
        raise CriteriaError("Criteria group must be a list, not %r" % (group,))
    items = list(group)
    if _directive_name(items):
        raise CriteriaError("Directive %r must be split from the criteria before compiling" % (items[0],))
    if items and all(isinstance(item, (list, tuple)) for item in items):
        triples = []
        for item in items:
            if len(item) == 2 and normalize_operator(item[1]) in NULL_OPERATORS:
                triples.append((item[0], item[1], None))
            elif len(item) == 3:
                triples.append(tuple(item))
            else:
                raise CriteriaError("Malformed criteria term %r" % (item,))
        return triples
    if len(items) % 3:
        raise CriteriaError("Criteria group must hold (column, operator, parameter) triples: %r" % (items,))
    return [tuple(items[i:i + 3]) for i in range(0, len(items), 3)]


def group_predicate(group):
    """Builds the predicate for one AND-group, or None for an empty group."""
    if isinstance(group, _Predicate):
        return group
    comparisons = [_ComparisonPredicate(column, op, param) for column, op, param in parse_group(group)]
    if not comparisons:
        return None
    if len(comparisons) == 1:
        return comparisons[0]
    return _ConjunctionPredicate(comparisons)


def criteria_predicate(criteria):
    """Builds the predicate for a sequence of OR-ed groups, or None when empty."""
    predicates = [p for p in (group_predicate(group) for group in criteria) if p is not None]
    if not predicates:
        return None
    if len(predicates) == 1:
        return predicates[0]
    return _DisjunctionPredicate(predicates)


def compile(criteria, namer):
    """Compiles criteria into a SQL boolean expression.

    A single group of several terms is parenthesized, and with several groups
    each group is parenthesized.

    :param criteria: iterable of AND-groups or predicates, OR-ed together (directives already split off)
    :param namer: function mapping a column reference to its SQL name
    :return: tuple of (SQL text or '' for no criteria, list of bound parameters)
    """
    predicate = criteria_predicate(criteria)
    params = []
    if predicate is None:
        return '', params
    sql = predicate.render(namer, params)
    if isinstance(predicate, _ConjunctionPredicate):
        sql = "(%s)" % sql
    logger.debug("Compiled %d term(s): %s %r" % (predicate.terms, sql, params))
    return sql, params
