"""Synthesis of SELECT, INSERT, UPDATE and DELETE statements.

Every function returns a `(sql, params)` pair where `sql` uses `?`
placeholders in the order of `params`. A *source* is either an
`orm_model.Table` or an `orm_model.Join`; joins are read through their
resolved `JoinPlan`.
"""

import logging

from . import criteria as _criteria
from .errors import ReadOnlyView, MutationError
from .orm_model import Join

logger = logging.getLogger(__name__)

_order_suffixes = {'asc': 'ASC', 'desc': 'DESC'}


def _check_mutable(table):
    if isinstance(table, Join):
        raise MutationError("Join '%s' cannot be written with a single-table statement." % table.name)
    if not table.mutable:
        raise ReadOnlyView("Table '%s' is a read-only view over '%s'." % (table.name, table.join_clause))


def namer_for(source):
    """Returns a function mapping column references of `source` to SQL names.

    Table columns are named by their SQL name. Join columns are qualified by
    the join member they belong to.
    """
    if isinstance(source, Join):
        return source.plan.qualify
    return lambda ref: source.column(ref).name


def select_list(source):
    """Returns the (SQL expression, result attribute) pairs of a SELECT on `source`."""
    if isinstance(source, Join):
        return [(member.qualify(column), attr) for member, column, attr in source.plan.selected]
    return [(column.name, column.alias) for column in source.columns]


def from_clause(source):
    if isinstance(source, Join):
        return source.plan.from_clause
    return source.from_clause


def where_clause(source, groups):
    """Returns the WHERE condition for `source` and the criteria groups.

    :param source: a Table or Join
    :param groups: criteria groups and predicates, directives already split off
    :return: tuple of (condition text or '', params)
    """
    sql, params = _criteria.compile(groups, namer_for(source))
    if isinstance(source, Join) and source.plan.join_condition:
        condition = source.plan.join_condition
        sql = "(%s) AND %s" % (sql, condition) if sql else condition
    return sql, params


def _order_term(ref, namer):
    direction = None
    if isinstance(ref, str):
        head, _, tail = ref.strip().rpartition(' ')
        if head and tail.lower() in _order_suffixes:
            ref, direction = head.strip(), _order_suffixes[tail.lower()]
    name = namer(ref)
    return "%s %s" % (name, direction) if direction else name


def limit_clause(template, offset, count):
    """Substitutes offset and count into a limit clause template."""
    return template.replace('%offset%', str(int(offset or 0))).replace('%count%', str(int(count)))


def select(source, criteria=(), directives=None):
    """Synthesizes a SELECT over a table or join.

    :param source: a Table or Join
    :param criteria: criteria groups, predicates and directive groups
    :param directives: additional criteria.Directives merged with any directive groups
    :return: tuple of (sql, params)
    """
    groups, found = _criteria.split_criteria(criteria)
    if directives is not None:
        if directives.limited:
            found.offset, found.count = directives.offset, directives.count
        found.order_by.extend(directives.order_by)

    namer = namer_for(source)
    parts = [
        "SELECT %s" % ", ".join("%s AS %s" % (expr, attr) for expr, attr in select_list(source)),
        "FROM %s" % from_clause(source),
    ]
    where, params = where_clause(source, groups)
    if where:
        parts.append("WHERE %s" % where)
    if not isinstance(source, Join) and source.group_by:
        parts.append("GROUP BY %s" % source.group_by)
    if found.order_by:
        parts.append("ORDER BY %s" % ", ".join(_order_term(ref, namer) for ref in found.order_by))
    if found.limited:
        parts.append(limit_clause(source.schema.limit_clause, found.offset, found.count))
    return " ".join(parts), params


def count(source, criteria=()):
    """Synthesizes a SELECT COUNT(*) over a table or join.

    Directive groups are ignored. A table with a group-by column counts its
    groups rather than its rows.
    """
    groups, _ = _criteria.split_criteria(criteria)
    where, params = where_clause(source, groups)
    where = " WHERE %s" % where if where else ""
    if not isinstance(source, Join) and source.group_by:
        return "SELECT COUNT(*) FROM (SELECT %s FROM %s%s GROUP BY %s) AS grouped" % (
            source.group_by, from_clause(source), where, source.group_by), params
    return "SELECT COUNT(*) FROM %s%s" % (from_clause(source), where), params


def pin_clause(pins):
    """Renders (column, value) pins as a conjunction of equalities.

    :return: tuple of (sql, params)
    """
    terms, params = [], []
    for column, value in pins:
        if value is None:
            terms.append("%s IS NULL" % column.name)
        else:
            terms.append("%s = ?" % column.name)
            params.append(value)
    return " AND ".join(terms), params


def insert(table, values):
    """Synthesizes an INSERT of one row.

    Primary key columns missing from `values` (or given as None) take the
    table's `for_null_primary` expression when it declares one.

    :param table: a Table
    :param values: list of (column, value) pairs
    :return: tuple of (sql, params)
    """
    _check_mutable(table)
    given = dict((column.name, value) for column, value in values)
    key_names = [c.name for c in table.key_columns]
    names, slots, params = [], [], []
    for column, value in values:
        if value is None and column.name in key_names and table.for_null_primary:
            continue
        names.append(column.name)
        slots.append('?')
        params.append(value)
    if table.for_null_primary:
        for cname in key_names:
            if given.get(cname) is None:
                names.append(cname)
                slots.append(table.for_null_primary)
    if not names:
        return "INSERT INTO %s DEFAULT VALUES" % table.name, params
    return "INSERT INTO %s (%s) VALUES (%s)" % (table.name, ", ".join(names), ", ".join(slots)), params


def bulk_insert(table, columns, rows):
    """Synthesizes one INSERT with a VALUES tuple per row.

    Values are not validated.

    :param table: a Table
    :param columns: list of column references
    :param rows: list of value sequences, one value per column
    :return: tuple of (sql, params)
    """
    _check_mutable(table)
    names = [table.column(ref).name for ref in columns]
    if not names:
        raise MutationError("Bulk insert into '%s' needs at least one column." % table.name)
    tuples, params = [], []
    for i, row in enumerate(rows):
        row = list(row)
        if len(row) != len(names):
            raise MutationError("Row %d of bulk insert into '%s' has %d values for %d columns." % (
                i, table.name, len(row), len(names)))
        tuples.append("(%s)" % ", ".join(['?'] * len(row)))
        params.extend(row)
    if not tuples:
        raise MutationError("Bulk insert into '%s' needs at least one row." % table.name)
    return "INSERT INTO %s (%s) VALUES %s" % (table.name, ", ".join(names), ", ".join(tuples)), params


def update(table, changes, pins):
    """Synthesizes an UPDATE of the changed columns of one pinned row.

    :param table: a Table
    :param changes: list of (column, new value) pairs
    :param pins: list of (column, current value) pairs identifying the row
    :return: tuple of (sql, params)
    """
    _check_mutable(table)
    if not changes:
        raise MutationError("Update of '%s' has no changed columns." % table.name)
    if not pins:
        raise MutationError("Update of '%s' is not pinned to a row." % table.name)
    sets = ", ".join("%s = ?" % column.name for column, _ in changes)
    where, params = pin_clause(pins)
    return "UPDATE %s SET %s WHERE %s" % (table.name, sets, where), [value for _, value in changes] + params


def delete(table, criteria=(), pins=None):
    """Synthesizes a DELETE by criteria or, when given, by row pins.

    Empty criteria without pins deletes every row of the table.
    """
    _check_mutable(table)
    if pins is not None:
        if not pins:
            raise MutationError("Delete from '%s' is not pinned to a row." % table.name)
        where, params = pin_clause(pins)
    else:
        groups, _ = _criteria.split_criteria(criteria)
        where, params = where_clause(table, groups)
    if where:
        return "DELETE FROM %s WHERE %s" % (table.name, where), params
    return "DELETE FROM %s" % table.name, params
