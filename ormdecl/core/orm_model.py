"""Declarative model: schemas, tables, columns, keys and joins.

A `Model` is populated once at setup (`Model.define`) and read many times
afterwards. Tables and joins may be added to a defined schema later with
`Schema.create_table` and `Schema.create_join`; existing definitions and the
handles built on them stay valid.
"""

import logging
import re
from collections import OrderedDict

from . import join_resolver
from .errors import DeclarationError, DuplicateSchema, UnknownSchema, UnknownTable, UnknownColumn
from .orm_config import check_declaration, load_declaration, resolve_callable, compile_pattern
from .utils.core_utils import AttrDict, DEFAULT_LIMIT_CLAUSE

logger = logging.getLogger(__name__)


class Type (object):
    """Semantic column type.
    """
    def __init__(self, typename, numeric, nullok):
        self.typename = typename
        self.numeric = numeric
        self.nullok = nullok

    def __repr__(self):
        return "<%s.%s %r>" % (type(self).__module__, type(self).__name__, self.typename)


builtin_types = AttrDict({
    'number': Type('number', True, False),
    'string': Type('string', False, False),
    'nullable_number': Type('nullable-number', True, True),
    'nullable_string': Type('nullable-string', False, True),
})

DEFAULT_TYPE = builtin_types.nullable_string
"""Type given to columns declared without one, including auto-added key columns"""


def make_type(type_spec):
    """Returns the builtin Type for a type name such as 'nullable-number' or 'nullablenumber'."""
    if isinstance(type_spec, Type):
        return type_spec
    key = re.sub('^nullable[-_]?', 'nullable_', str(type_spec))
    try:
        return builtin_types[key]
    except KeyError:
        raise DeclarationError("Unknown column type %r" % (type_spec,))


class KeyedList (list):
    """Keyed list."""
    def __init__(self, l):
        list.__init__(self, l)
        self.elements = {
            e.name: e
            for e in l
        }

    def __getitem__(self, idx):
        """Get element by key or by list index or slice."""
        if isinstance(idx, (int, slice)):
            return list.__getitem__(self, idx)
        else:
            return self.elements[idx]

    def append(self, e):
        """Append element to list and record its key."""
        if e.name in self.elements:
            raise ValueError('Element name %s already exists.' % (e.name,))
        list.append(self, e)
        self.elements[e.name] = e


class Model (object):
    """Registry of named schemas.
    """
    def __init__(self):
        self.schemas = OrderedDict()

    def __repr__(self):
        return "<%s.%s schemas=%r at 0x%x>" % (
            type(self).__module__, type(self).__name__, list(self.schemas), id(self))

    def define(self, schema_doc):
        """Validate a declaration and register the schema it describes.

        The schema is fully built before it is registered, so a rejected
        declaration leaves the registry unchanged.

        :param schema_doc: a declaration mapping (see `Schema.define`)
        :return: the registered Schema
        """
        doc = check_declaration(schema_doc)
        sname = doc['schema']
        if sname in self.schemas:
            raise DuplicateSchema("Schema '%s' is already defined." % sname)
        schema = Schema(self, doc)
        self.schemas[sname] = schema
        logger.debug("Defined schema '%s' with %d table(s) and %d join(s)" % (sname, len(schema.tables), len(schema.joins)))
        return schema

    def define_from_file(self, path):
        """Register the schema declared in a JSON file."""
        return self.define(load_declaration(path))

    def drop(self, sname):
        """Remove a schema from the registry."""
        self.schema(sname)
        del self.schemas[sname]

    def schema(self, sname):
        try:
            return self.schemas[sname]
        except KeyError:
            raise UnknownSchema("Schema '%s' is not defined." % sname)

    def table(self, sname, tname):
        """Return table configuration object for named schema and table, or join."""
        return self.schema(sname).lookup(tname)

    def column(self, sname, tname, cname):
        """Return column configuration object for named schema, table, and column name or alias."""
        return self.schema(sname).table(tname).column(cname)


class Schema (object):
    """Named schema.
    """
    def __init__(self, model, schema_doc):
        self.model = model
        self.name = schema_doc['schema']
        self.comment = schema_doc.get('comment')
        self.limit_clause = schema_doc.get('limit_clause') or DEFAULT_LIMIT_CLAUSE
        self.tables = OrderedDict()
        self.joins = OrderedDict()
        self.table_aliases = OrderedDict()
        self._names = {}
        for tdoc in schema_doc.get('tables', []):
            self._add_table(Table(self, tdoc))
        for alias, tname in schema_doc.get('table_aliases', {}).items():
            self._add_alias(alias, tname)
        for jdoc in schema_doc.get('joins', []):
            self._add_join(Join(self, jdoc))

    def __repr__(self):
        cls = type(self)
        return "<%s.%s object %r at 0x%x>" % (
            cls.__module__,
            cls.__name__,
            self.name,
            id(self),
        )

    @classmethod
    def define(cls, sname, tables=[], joins=[], table_aliases={}, limit_clause=None, comment=None):
        """Build a schema declaration.

        :param sname: the name of the schema
        :param tables: a list of Table.define() results
        :param joins: a list of Join.define() results
        :param table_aliases: a mapping of additional table names to declared table names
        :param limit_clause: a limit clause template using %offset% and %count% placeholders
        :param comment: a comment string for the schema
        """
        doc = {
            'schema': sname,
            'tables': list(tables),
            'joins': list(joins),
            'table_aliases': dict(table_aliases),
        }
        if limit_clause is not None:
            doc['limit_clause'] = limit_clause
        if comment is not None:
            doc['comment'] = comment
        return doc

    def _register_name(self, name, obj):
        if name in self._names and self._names[name] is not obj:
            raise DeclarationError("Name '%s' is used more than once in schema '%s'." % (name, self.name))
        self._names[name] = obj

    def _add_table(self, table):
        if table.name in self.tables:
            raise DeclarationError("Table '%s' is declared more than once in schema '%s'." % (table.name, self.name))
        for name in table.names:
            self._register_name(name, table)
        self.tables[table.name] = table

    def _add_alias(self, alias, tname):
        table = self.table(tname)
        self._register_name(alias, table)
        self.table_aliases[alias] = table.name

    def _add_join(self, join):
        if join.name in self.joins:
            raise DeclarationError("Join '%s' is declared more than once in schema '%s'." % (join.name, self.name))
        join.plan  # resolve eagerly so a disconnected join fails at definition time
        self._register_name(join.name, join)
        self.joins[join.name] = join

    def create_table(self, table_doc):
        """Add a table to this schema.

        :param table_doc: a Table.define() result
        :return: the new Table
        """
        doc = check_declaration({'schema': self.name, 'tables': [table_doc]})
        table = Table(self, doc['tables'][0])
        self._add_table(table)
        logger.debug("Added table '%s' to schema '%s'" % (table.name, self.name))
        return table

    def create_join(self, join_doc):
        """Add a join to this schema.

        :param join_doc: a Join.define() result
        :return: the new Join
        """
        doc = check_declaration({'schema': self.name, 'joins': [join_doc]})
        join = Join(self, doc['joins'][0])
        self._add_join(join)
        logger.debug("Added join '%s' to schema '%s'" % (join.name, self.name))
        return join

    def create_table_alias(self, alias, tname):
        """Add an alternative name for a declared table."""
        self._add_alias(alias, tname)

    def lookup(self, name):
        """Returns the table or join known by the given name or alias."""
        try:
            return self._names[name]
        except KeyError:
            raise UnknownTable("Schema '%s' has no table or join '%s'." % (self.name, name))

    def table(self, name):
        """Returns the table known by the given name or alias."""
        obj = self.lookup(name)
        if not isinstance(obj, Table):
            raise UnknownTable("'%s' in schema '%s' is a join, not a table." % (name, self.name))
        return obj

    def join(self, name):
        """Returns the join known by the given name."""
        obj = self.lookup(name)
        if not isinstance(obj, Join):
            raise UnknownTable("'%s' in schema '%s' is a table, not a join." % (name, self.name))
        return obj


class Table (object):
    """Named table, or a read-only view when a literal join clause is declared.
    """
    kind = 'table'

    def __init__(self, schema, table_doc):
        self.schema = schema
        self.name = table_doc['table']
        self.alias = table_doc.get('alias')
        self.comment = table_doc.get('comment')
        self.join_clause = table_doc.get('join_clause')
        self.for_null_primary = table_doc.get('for_null_primary')
        self.select_null_primary = table_doc.get('select_null_primary')
        self.column_definitions = KeyedList([])
        self._column_names = {}
        for cdoc in table_doc.get('columns', []):
            self._add_column(Column(self, cdoc))
        pkey = [self._key_column(cname) for cname in table_doc.get('primary', [])]
        self.primary_key = Key(self, pkey, primary=True) if pkey else None
        self.keys = KeyedList([
            Key(self, [self._key_column(cname) for cname in ucols])
            for ucols in table_doc.get('unique', [])
            if ucols
        ])
        group_by = table_doc.get('group_by')
        self.group_by = self.column(group_by).name if group_by else None

    def __repr__(self):
        cls = type(self)
        return "<%s.%s object %r.%r at 0x%x>" % (
            cls.__module__,
            cls.__name__,
            self.schema.name if self.schema is not None else None,
            self.name,
            id(self),
        )

    @classmethod
    def define(cls, tname, column_defs=[], primary=[], unique=[], alias=None, group_by=None, join_clause=None,
               for_null_primary=None, select_null_primary=None, comment=None):
        """Build a table declaration.

        :param tname: the SQL name of the table
        :param column_defs: a list of Column.define() results
        :param primary: list of primary key column names (may be empty)
        :param unique: list of unique key column name lists
        :param alias: an alternative name for the table
        :param group_by: a column to group search results by
        :param join_clause: a literal SQL join fragment appended to the table name, making the table a read-only view
        :param for_null_primary: literal SQL expression inserted for an unset primary key
        :param select_null_primary: SQL query returning the key generated by the last insert
        :param comment: a comment string for the table
        """
        doc = {
            'table': tname,
            'columns': list(column_defs),
            'primary': list(primary),
            'unique': [list(u) for u in unique],
        }
        for k, v in [('alias', alias), ('group_by', group_by), ('join_clause', join_clause),
                     ('for_null_primary', for_null_primary), ('select_null_primary', select_null_primary),
                     ('comment', comment)]:
            if v is not None:
                doc[k] = v
        return doc

    def _add_column(self, column):
        for name in column.names:
            if name in self._column_names:
                raise DeclarationError("Column name or alias '%s' is ambiguous in table '%s'." % (name, self.name))
        self.column_definitions.append(column)
        for name in column.names:
            self._column_names[name] = column

    def _key_column(self, cname):
        if cname not in self._column_names:
            logger.debug("Adding undeclared key column '%s' to table '%s'" % (cname, self.name))
            self._add_column(Column(self, Column.define(cname)))
        return self._column_names[cname].name

    @property
    def columns(self):
        """Sugared access to self.column_definitions"""
        return self.column_definitions

    @property
    def names(self):
        """All names by which this table may be looked up in its schema."""
        return [self.name] + ([self.alias] if self.alias and self.alias != self.name else [])

    @property
    def is_view(self):
        """True for tables built from a literal join clause."""
        return bool(self.join_clause)

    @property
    def mutable(self):
        return not self.is_view

    @property
    def key_columns(self):
        """Ordered primary key columns, or an empty list."""
        return list(self.primary_key.unique_columns) if self.primary_key else []

    @property
    def from_clause(self):
        return "%s %s" % (self.name, self.join_clause) if self.join_clause else self.name

    def column(self, cname):
        """Returns the column known by the given SQL name or alias."""
        try:
            return self._column_names[cname]
        except (KeyError, TypeError):
            raise UnknownColumn("Table '%s' has no column '%s'." % (self.name, cname))

    def has_column(self, cname):
        return cname in self._column_names


class Column (object):
    """Named column.
    """
    def __init__(self, table, column_doc):
        self.table = table
        self.name = column_doc.get('sql_name') or column_doc['name']
        self.alias = column_doc.get('alias') or self.name
        self.type = make_type(column_doc.get('type', DEFAULT_TYPE))
        self.matches = compile_pattern(column_doc.get('matches'))
        self.constraint = resolve_callable(column_doc.get('constraint'))
        self.comment = column_doc.get('comment')

    def __repr__(self):
        cls = type(self)
        return "<%s.%s object %r.%r at 0x%x>" % (
            cls.__module__,
            cls.__name__,
            self.table.name if self.table is not None else None,
            self.name,
            id(self),
        )

    @property
    def nullok(self):
        return self.type.nullok

    @property
    def names(self):
        return [self.name] if self.alias == self.name else [self.name, self.alias]

    @classmethod
    def define(cls, sql_name, ctype=DEFAULT_TYPE, alias=None, matches=None, constraint=None, comment=None):
        """Build a column declaration.

        :param sql_name: the SQL name of the column
        :param ctype: a Type from builtin_types or a type name
        :param alias: an alternative name used for attribute access
        :param matches: a regular expression the stringified value must match
        :param constraint: a callable (context, value, column_name) returning True to accept the value
        :param comment: a comment string for the column
        """
        doc = {
            'sql_name': sql_name,
            'type': make_type(ctype).typename,
        }
        for k, v in [('alias', alias), ('matches', matches), ('constraint', constraint), ('comment', comment)]:
            if v is not None:
                doc[k] = v
        return doc


class Key (object):
    """Unique or primary key.
    """
    def __init__(self, table, unique_columns, primary=False):
        self.table = table
        self.primary = primary
        self.unique_columns = KeyedList([
            table.column(cname)
            for cname in unique_columns
        ])

    def __repr__(self):
        cls = type(self)
        return "<%s.%s object %r at 0x%x>" % (cls.__module__, cls.__name__, self.name, id(self))

    @property
    def name(self):
        return "%s_%s_%s" % (self.table.name, "_".join(c.name for c in self.unique_columns),
                             "pkey" if self.primary else "key")

    @property
    def columns(self):
        """Sugared access to self.unique_columns"""
        return self.unique_columns


class JoinLink (object):
    """One secondary table of a join and the column equalities linking it in.

    `columns` maps a column of the linking table (the join's primary table, or
    the `on_secondary` table when given) to a column of the linked table.
    """
    def __init__(self, join, link_doc):
        self.join = join
        self.table_name = link_doc['table']
        self.on_secondary = link_doc.get('on_secondary')
        self.columns = OrderedDict(link_doc.get('columns', {}))

    def __repr__(self):
        return "<%s.%s %r -> %r>" % (type(self).__module__, type(self).__name__,
                                     self.on_secondary or self.join.primary_name, self.table_name)

    @property
    def table(self):
        return self.join.schema.table(self.table_name)


class Join (object):
    """Named join of a primary table with linked secondary tables.
    """
    kind = 'join'

    def __init__(self, schema, join_doc):
        self.schema = schema
        self.name = join_doc['name']
        self.primary_name = join_doc['primary']
        self.comment = join_doc.get('comment')
        self.links = [JoinLink(self, ldoc) for ldoc in join_doc.get('tables', [])]
        self._plan = None

    def __repr__(self):
        cls = type(self)
        return "<%s.%s object %r.%r at 0x%x>" % (cls.__module__, cls.__name__, self.schema.name, self.name, id(self))

    @classmethod
    def define(cls, jname, primary, links=[], comment=None):
        """Build a join declaration.

        :param jname: the name of the join
        :param primary: the name of the primary table
        :param links: a list of JoinLink-style dicts: {'table': ..., 'columns': {...}, 'on_secondary': ...}
        :param comment: a comment string for the join
        """
        doc = {
            'name': jname,
            'primary': primary,
            'tables': [dict(link) for link in links],
        }
        if comment is not None:
            doc['comment'] = comment
        return doc

    @property
    def primary(self):
        return self.schema.table(self.primary_name)

    @property
    def plan(self):
        """The resolved join plan (see join_resolver.JoinPlan)."""
        if self._plan is None:
            self._plan = join_resolver.resolve(self)
        return self._plan

    @property
    def is_view(self):
        return False

    @property
    def mutable(self):
        return True


registry = Model()
"""Process-wide default registry"""


def define(schema_doc):
    """Register a schema declaration in the process-wide registry."""
    return registry.define(schema_doc)
