"""Handles for searching and mutating declared tables and joins.

Handles wrap the declarations of a `Model` together with a storage
collaborator::

    model = from_storage(connect('sqlite:///people.db'))
    people = model.schemas['hr'].tables['people']      # or model.hr.people
    adults = people.search(['age', 'ge', 18], ['order by', 'name'])
    c = people.columns
    people.search((c.age >= 18) & c.name.like('M%'), limit=10)

Handles never change once built; `with_storage` returns a new handle bound to
another storage. Tables and joins added to a schema after a schema handle was
built are still reachable through it.
"""

import itertools
import logging
import re
from collections import OrderedDict

from . import constraints, statements
from .criteria import Directives, _ComparisonPredicate
from .entity import Entity, JoinEntity
from .errors import CriteriaError, JoinNotInsertable, ModelError, MutationError, StorageError, ValidationError
from .orm_model import Join, registry

logger = logging.getLogger(__name__)


def from_storage(storage, model=None):
    """Wraps a model and a storage collaborator for search and mutation.

    :param storage: a storage.Storage object
    :param model: the orm_model.Model holding the declarations, the process-wide registry by default
    :return: a datapath._ModelWrapper object
    """
    return _ModelWrapper(storage, model if model is not None else registry)


def _isidentifier(a):
    """Tests if string is a valid python identifier.

    :param a: a string
    """
    return isinstance(a, str) and a.isidentifier()


def _identifier_for_name(name, *reserveds):
    """Makes an identifier from a given name and disambiguates if it is reserved.

    1. replace invalid identifier characters with '_'
    2. prepend with '_' if first character is a digit
    3. append a disambiguating positive integer if it is reserved

    :param name: a string of any format
    :param *reserveds: iterable collections of reserved strings
    :return: a valid identifier string for the given name
    """
    assert len(name) > 0, 'empty strings are not allowed'

    identifier = re.sub("[^_a-zA-Z0-9]", "_", name)
    if identifier[0].isdigit():
        identifier = '_' + identifier

    disambiguator = 1
    ambiguous = identifier
    while any(identifier in reserved for reserved in reserveds):
        identifier = ambiguous + str(disambiguator)
        disambiguator += 1

    return identifier


def _make_identifier_to_name_mapping(names, reserved):
    """Makes a dictionary of (valid) identifiers to (original) names.

    Names that are valid identifiers and not reserved map to themselves,
    reserved names get a '1' suffix, and remaining names are converted and
    disambiguated.

    :param names: iterable collection of strings
    :param reserved: iterable collection of reserved identifiers
    :return: a dictionary to map from identifier to name
    """
    names = list(names)
    reserved = set(reserved)
    mappings = {
        name: name
        for name in names if _isidentifier(name) and name not in reserved
    }
    mappings.update({
        name + '1': name
        for name in names if name in reserved and name + '1' not in mappings
    })
    for name in names:
        if name not in mappings.values():
            mappings[_identifier_for_name(name, mappings.keys(), reserved)] = name
    return mappings


class _ModelWrapper (object):
    """Wraps a Model for search and mutation.
    """
    def __init__(self, storage, model):
        """Creates the _ModelWrapper.

        :param storage: the storage collaborator
        :param model: the wrapped orm_model.Model
        """
        super(_ModelWrapper, self).__init__()
        self._storage = storage
        self._wrapped_model = model

    def __repr__(self):
        return "<%s schemas=%r storage=%r>" % (type(self).__name__, list(self._wrapped_model.schemas), self._storage)

    @property
    def schemas(self):
        return OrderedDict(
            (k, _SchemaWrapper(self, v))
            for k, v in self._wrapped_model.schemas.items()
        )

    def _identifiers(self):
        return _make_identifier_to_name_mapping(self._wrapped_model.schemas.keys(), super(_ModelWrapper, self).__dir__())

    def __dir__(self):
        return itertools.chain(
            super(_ModelWrapper, self).__dir__(),
            self._identifiers().keys()
        )

    def __getattr__(self, a):
        if a.startswith('_'):
            raise AttributeError(a)
        identifiers = self._identifiers()
        if a in identifiers:
            return _SchemaWrapper(self, self._wrapped_model.schema(identifiers[a]))
        raise AttributeError("'%s' object has no attribute or schema '%s'" % (type(self).__name__, a))

    def __getitem__(self, sname):
        return _SchemaWrapper(self, self._wrapped_model.schema(sname))

    def with_storage(self, storage):
        """Returns a new handle on the same model bound to `storage`."""
        return _ModelWrapper(storage, self._wrapped_model)


class _SchemaWrapper (object):
    """Wraps a Schema for search and mutation.
    """
    def __init__(self, model, schema):
        """Creates the _SchemaWrapper.

        :param model: the model wrapper to which this schema wrapper belongs
        :param schema: the wrapped schema object
        """
        super(_SchemaWrapper, self).__init__()
        self._model = model
        self._storage = model._storage
        self._wrapped_schema = schema
        self._name = schema.name

    def __repr__(self):
        return "<%s %r>" % (type(self).__name__, self._name)

    @property
    def name(self):
        return self._name

    @property
    def tables(self):
        return OrderedDict(
            (k, _TableWrapper(self, v))
            for k, v in self._wrapped_schema.tables.items()
        )

    @property
    def joins(self):
        return OrderedDict(
            (k, _JoinWrapper(self, v))
            for k, v in self._wrapped_schema.joins.items()
        )

    def _wrap(self, definition):
        if isinstance(definition, Join):
            return _JoinWrapper(self, definition)
        return _TableWrapper(self, definition)

    def _identifiers(self):
        return _make_identifier_to_name_mapping(self._wrapped_schema._names.keys(), super(_SchemaWrapper, self).__dir__())

    def __dir__(self):
        return itertools.chain(
            super(_SchemaWrapper, self).__dir__(),
            self._identifiers().keys()
        )

    def __getattr__(self, a):
        if a.startswith('_'):
            raise AttributeError(a)
        identifiers = self._identifiers()
        if a in identifiers:
            return self._wrap(self._wrapped_schema.lookup(identifiers[a]))
        raise AttributeError("'%s' object for schema '%s' has no attribute or table '%s'" % (type(self).__name__, self._name, a))

    def __getitem__(self, name):
        """Returns the handle of the table or join known by a SQL name, alias or table alias."""
        return self._wrap(self._wrapped_schema.lookup(name))

    def with_storage(self, storage):
        """Returns a new handle on the same schema bound to `storage`."""
        return _SchemaWrapper(self._model.with_storage(storage), self._wrapped_schema)


class _SortDescending (object):
    """Descending sort modifier of a column."""
    def __init__(self, column):
        self._column = column

    def __str__(self):
        return "%s desc" % self._column


class _ColumnWrapper (object):
    """Wraps a Column for building search predicates.
    """
    def __init__(self, table, column, ref):
        """Creates a _ColumnWrapper object.

        :param table: the table or join handle to which this column belongs
        :param column: the wrapped column
        :param ref: the reference used for this column in predicates
        """
        super(_ColumnWrapper, self).__init__()
        self._table = table
        self._wrapped_column = column
        self._name = column.name
        self._ref = ref

    def __repr__(self):
        return "<%s %r>" % (type(self).__name__, self._ref)

    def __str__(self):
        return self._ref

    @property
    def ref(self):
        """The reference used for this column in predicates."""
        return self._ref

    @property
    def desc(self):
        """A descending sort modifier based on this column."""
        return _SortDescending(self)

    def eq(self, other):
        """Returns an 'equality' comparison predicate.

        :param other: `None` or any other literal value.
        :return: a filter predicate object
        """
        if other is None:
            return _ComparisonPredicate(self._ref, 'isnull')
        return _ComparisonPredicate(self._ref, 'eq', other)

    __eq__ = eq

    def ne(self, other):
        """Returns an 'inequality' comparison predicate.

        :param other: `None` or any other literal value.
        :return: a filter predicate object
        """
        if other is None:
            return _ComparisonPredicate(self._ref, 'notnull')
        return _ComparisonPredicate(self._ref, 'ne', other)

    __ne__ = ne

    def lt(self, other):
        """Returns a 'less than' comparison predicate."""
        return _ComparisonPredicate(self._ref, 'lt', other)

    __lt__ = lt

    def le(self, other):
        """Returns a 'less than or equal' comparison predicate."""
        return _ComparisonPredicate(self._ref, 'le', other)

    __le__ = le

    def gt(self, other):
        """Returns a 'greater than' comparison predicate."""
        return _ComparisonPredicate(self._ref, 'gt', other)

    __gt__ = gt

    def ge(self, other):
        """Returns a 'greater than or equal' comparison predicate."""
        return _ComparisonPredicate(self._ref, 'ge', other)

    __ge__ = ge

    def like(self, pattern):
        """Returns a SQL 'like' pattern predicate."""
        return _ComparisonPredicate(self._ref, 'like', pattern)

    def notlike(self, pattern):
        return _ComparisonPredicate(self._ref, 'notlike', pattern)

    def isnull(self):
        return _ComparisonPredicate(self._ref, 'isnull')

    def notnull(self):
        return _ComparisonPredicate(self._ref, 'notnull')

    def in_(self, values):
        """Returns a set membership predicate.

        :param values: an iterable of literal values, or a `raw` sub-select
        :return: a filter predicate object
        """
        return _ComparisonPredicate(self._ref, 'in', values)

    def notin(self, values):
        return _ComparisonPredicate(self._ref, 'notin', values)


def _pin_group(pairs):
    """Returns a criteria group matching each (reference, value) pair exactly."""
    return [(ref, 'isnull') if value is None else (ref, 'eq', value) for ref, value in pairs]


class _SourceWrapper (object):
    """Operations shared by table and join handles."""

    _entity_class = Entity

    def __init__(self, schema, definition):
        self._schema = schema
        self._storage = schema._storage
        self._definition = definition
        self._name = definition.name
        self._column_wrappers = self._make_column_wrappers()
        self._identifiers = _make_identifier_to_name_mapping(
            self._column_wrappers.keys(),
            super(_SourceWrapper, self).__dir__())

    def __repr__(self):
        return "<%s %r.%r>" % (type(self).__name__, self._schema._name, self._name)

    def __dir__(self):
        return itertools.chain(
            super(_SourceWrapper, self).__dir__(),
            self._identifiers.keys()
        )

    def __getattr__(self, a):
        if a.startswith('_'):
            raise AttributeError(a)
        if a in self._identifiers:
            return self._column_wrappers[self._identifiers[a]]
        raise AttributeError("'%s' object for '%s' has no attribute or column '%s'" % (type(self).__name__, self._name, a))

    @property
    def name(self):
        return self._name

    @property
    def columns(self):
        """Column wrappers keyed by every name that resolves to the column."""
        return self._column_wrappers

    @property
    def schema(self):
        return self._schema

    def with_storage(self, storage):
        """Returns a new handle on the same definition bound to `storage`."""
        return type(self)(self._schema.with_storage(storage), self._definition)

    def _directives(self, limit, offset, order_by):
        if limit is None and offset:
            raise CriteriaError("An offset requires a limit.")
        if order_by is None:
            order_by = []
        elif isinstance(order_by, (str, _ColumnWrapper, _SortDescending)):
            order_by = [order_by]
        return Directives(offset if limit is not None else None, limit, [str(o) for o in order_by])

    def select_sql(self, *criteria, limit=None, offset=0, order_by=None):
        """Returns the SELECT statement and parameters a search would run.

        :param criteria: criteria groups, predicates and directive groups
        :param limit: maximum number of rows
        :param offset: number of rows to skip, with a limit
        :param order_by: column reference or list of references; suffix ' desc' for descending order
        :return: tuple of (sql, params)
        """
        return statements.select(self._definition, criteria, self._directives(limit, offset, order_by))

    def search(self, *criteria, limit=None, offset=0, order_by=None):
        """Fetches matching rows.

        Criteria are OR-ed together; terms within one group are AND-ed.

        :return: list of entities
        """
        sql, params = self.select_sql(*criteria, limit=limit, offset=offset, order_by=order_by)
        return [self._entity_class(self, row) for row in self._storage.query(sql, params)]

    def size(self, *criteria):
        """Counts matching rows, or matching groups for a table with a group-by column."""
        sql, params = statements.count(self._definition, criteria)
        rows = self._storage.query(sql, params)
        return int(rows[0][0]) if rows else 0

    def _entity_from_values(self, values):
        slots = self._entity_class(self, [])._slots()
        return self._entity_class(self, [values.get(slot) for slot in slots])

    def _reload(self, pairs, values):
        """Fetches the row just written, falling back to the written values."""
        if pairs:
            found = self.search(_pin_group(pairs), limit=1)
            if found:
                return found[0]
        logger.debug("Row written to '%s' could not be reloaded; using written values" % self._name)
        return self._entity_from_values(values)

    def _recover_key(self, table, row):
        """Runs the table's generated key query right after its INSERT, before any other statement."""
        key = table.key_columns
        if not table.select_null_primary or len(key) != 1 or row.get(key[0].name) is not None:
            return None
        rows = self._storage.query(table.select_null_primary)
        if not rows:
            return None
        logger.debug("Recovered generated key %r for '%s'" % (rows[0][0], table.name))
        return {key[0].name: rows[0][0]}

    def create_only(self, rows):
        """Creates rows without reloading them.

        Each row is validated and inserted on its own, so a rejected row does
        not stop the others.

        :param rows: iterable of mappings of column references to values
        :return: list of booleans, True for each row created
        """
        results = []
        for i, values in enumerate(rows):
            try:
                self._write(values)
                results.append(True)
            except (ValidationError, ModelError, MutationError, StorageError) as e:
                logger.warning("Row %d not created in '%s': %s" % (i, self._name, e))
                if isinstance(e, StorageError):
                    self._storage.rollback_transaction()
                results.append(False)
        return results

    def create(self, values=None, **kwargs):
        """Validates and inserts one row, then returns it reloaded as an entity.

        :param values: mapping of column references to values
        :param kwargs: further column values
        :return: the new entity
        """
        values = OrderedDict(values or {})
        values.update(kwargs)
        return self._reload(*self._write(values))


class _TableWrapper (_SourceWrapper):
    """Wraps a Table for search and mutation.
    """
    def __init__(self, schema, table):
        """Creates a _TableWrapper object.

        :param schema: the schema handle to which this table belongs
        :param table: the wrapped table
        """
        super(_TableWrapper, self).__init__(schema, table)

    @property
    def _wrapped_table(self):
        return self._definition

    def _make_column_wrappers(self):
        wrappers = OrderedDict()
        for column in self._definition.columns:
            wrapper = _ColumnWrapper(self, column, column.name)
            for name in column.names:
                wrappers[name] = wrapper
        return wrappers

    def _write(self, values):
        """Validates and inserts a row.

        :return: tuple of (key reference/value pairs for reloading, written values keyed by SQL name)
        """
        table = self._definition
        accepted = constraints.validate_values(table, OrderedDict(values), self)
        sql, params = statements.insert(table, accepted)
        self._storage.execute(sql, params)
        written = OrderedDict((column.name, value) for column, value in accepted)
        key = self._recover_key(table, written)
        self._storage.commit_transaction()
        if key is not None:
            written.update(key)
        if table.key_columns:
            return [(c.name, written.get(c.name)) for c in table.key_columns], written
        return list(written.items()), written

    def bulk_create(self, columns, rows):
        """Inserts many rows with one statement, without validation.

        :param columns: list of column references
        :param rows: list of value sequences matching `columns`
        :return: number of rows the driver reports as inserted
        """
        rows = list(rows)
        if not rows:
            return 0
        sql, params = statements.bulk_insert(self._definition, columns, rows)
        count = self._storage.execute(sql, params)
        self._storage.commit_transaction()
        return count

    def delete(self, *criteria):
        """Deletes matching rows, or every row without criteria.

        :return: number of rows deleted
        """
        sql, params = statements.delete(self._definition, criteria)
        count = self._storage.execute(sql, params)
        self._storage.commit_transaction()
        return count


class _JoinWrapper (_SourceWrapper):
    """Wraps a Join for search and mutation.
    """
    _entity_class = JoinEntity

    def __init__(self, schema, join):
        """Creates a _JoinWrapper object.

        :param schema: the schema handle to which this join belongs
        :param join: the wrapped join
        """
        super(_JoinWrapper, self).__init__(schema, join)

    @property
    def _wrapped_join(self):
        return self._definition

    @property
    def _plan(self):
        return self._definition.plan

    def _make_column_wrappers(self):
        wrappers = OrderedDict()
        for member, column, attr in self._plan.selected:
            wrapper = _ColumnWrapper(self, column, "%s.%s" % (member.name, column.name))
            wrappers[attr] = wrapper
            wrappers.setdefault("%s_%s" % (member.name, column.alias), wrapper)
        return wrappers

    def _write(self, values):
        """Validates and inserts one row per member table in dependency order.

        Generated keys of linked tables are threaded into the rows linking to
        them. The statements are not atomic: a failure part way leaves the rows
        already inserted.

        :return: tuple of (key reference/value pairs for reloading, written values keyed by join slot)
        """
        plan = self._plan
        order = plan.insertion_order()
        rows = OrderedDict((member.name, OrderedDict()) for member in order)
        for ref, value in OrderedDict(values).items():
            member, column = plan.resolve_column(ref)
            rows[member.name][column.name] = constraints.validate(column, value, self)

        keys = {}
        written = OrderedDict()
        for member in order:
            table = member.table
            row = rows[member.name]
            for edge in plan.edges:
                if edge.source is member:
                    for eq in edge.equalities:
                        row[eq.source_column.name] = keys[eq.target.name]
            sql, params = statements.insert(table, [(table.column(cname), value) for cname, value in row.items()])
            self._storage.execute(sql, params)
            key = self._recover_key(table, row)
            if key is not None:
                row.update(key)
            if len(table.key_columns) == 1:
                keys[member.name] = row.get(table.key_columns[0].name)
            for cname, value in row.items():
                written[(member.name, cname)] = value
        self._storage.commit_transaction()

        pairs = [
            ("%s.%s" % (member.name, member.table.key_columns[0].name), keys[member.name])
            for member in order
            if member.name in keys and keys[member.name] is not None
        ]
        return pairs, written

    def bulk_create(self, columns, rows):
        raise JoinNotInsertable("Join '%s' does not support bulk creation." % self._name)

    def delete(self, *criteria):
        """Deletes the primary table rows of matching join rows, one at a time.

        :return: number of join rows deleted
        """
        count = 0
        for entity in self.search(*criteria):
            entity.delete()
            entity.commit()
            count += 1
        return count
