"""Validation of proposed column values against declared rules.

Precedence is: a custom constraint callable when declared, otherwise a
pattern when declared, otherwise the column's semantic type.
"""

import logging
import numbers
import re

from .errors import ConstraintViolation, PatternMismatch, TypeMismatch

logger = logging.getLogger(__name__)

_numeric_re = re.compile(r'^\s*[-+]?(\d+(\.\d*)?|\.\d+)([eE][-+]?\d+)?\s*$')


def is_numeric(value):
    """Tests if a value is a number or a string spelling one."""
    if isinstance(value, bool):
        return False
    if isinstance(value, numbers.Number):
        return True
    if isinstance(value, (str, bytes)):
        if isinstance(value, bytes):
            value = value.decode('utf-8', 'replace')
        return _numeric_re.match(value) is not None
    return False


def validate(column, value, context=None):
    """Validate a proposed value for a column.

    :param column: an orm_model.Column
    :param value: the proposed value
    :param context: the object on whose behalf the value is set (entity or table handle); passed to custom rules
    :return: the accepted value
    """
    if column.constraint is not None:
        if not column.constraint(context, value, column.name):
            raise ConstraintViolation("Value %r rejected by constraint on column '%s'." % (value, column.name),
                                      column=column.name, value=value)
        return value

    if column.matches is not None:
        # null is matched as the empty string
        if column.matches.search('' if value is None else str(value)) is None:
            raise PatternMismatch("Value %r does not match the pattern of column '%s'." % (value, column.name),
                                  column=column.name, value=value)
        return value

    ctype = column.type
    if value is None:
        if not ctype.nullok:
            raise TypeMismatch("Column '%s' of type %s does not accept null." % (column.name, ctype.typename),
                               column=column.name, value=value)
        return value
    if ctype.numeric and not is_numeric(value):
        raise TypeMismatch("Value %r is not numeric for column '%s'." % (value, column.name),
                           column=column.name, value=value)
    return value


def validate_values(table, values, context=None):
    """Validate a mapping of column references to values for one table.

    :param table: an orm_model.Table
    :param values: mapping of column SQL names or aliases to proposed values
    :param context: passed through to custom rules
    :return: an ordered list of (column, value) pairs keyed by canonical column
    """
    accepted = []
    seen = set()
    for cname, value in values.items():
        column = table.column(cname)
        if column.name in seen:
            logger.debug("Column '%s' of table '%s' given more than once; last value wins" % (column.name, table.name))
            accepted = [(c, v) for c, v in accepted if c.name != column.name]
        seen.add(column.name)
        accepted.append((column, validate(column, value, context)))
    return accepted
