"""Entities: in-memory rows with dirty tracking.

An entity is materialized from a fetched row (or reloaded right after a
create) and starts clean. Setting a column validates the value, records it
and marks the column dirty without touching the database. `commit()` writes
all dirty columns with a single UPDATE, or, after `delete()`, removes the row
and demotes the entity to a detached record. There is no rollback: an entity
discarded before `commit()` loses its changes.
"""

import logging
from collections import OrderedDict
from enum import Enum

from . import constraints, statements
from .errors import EntityGone, MutationError, ReadOnlyView, UnknownColumn
from .utils.core_utils import AttrDict

logger = logging.getLogger(__name__)


class EntityState (str, Enum):
    """Lifecycle states of an entity."""
    clean = 'clean'
    dirty = 'dirty'
    pending_delete = 'pending-delete'
    gone = 'gone'


class Entity (object):
    """A row of a table.

    Column values are read and written by SQL name or alias, as attributes or
    items::

        row = people.search(['id', 'eq', 5])[0]
        row.name = 'Mary'
        row['age'] = 41
        row.commit()
    """
    def __init__(self, handle, row):
        """Creates an entity from a fetched row.

        :param handle: the table handle that fetched the row
        :param row: column values in select-list order of the table
        """
        self._handle = handle
        self._storage = handle._storage
        self._values = OrderedDict(zip(self._slots(), row))
        self._original = OrderedDict(self._values)
        self._dirty = []
        self._pending_delete = False
        self._gone = False

    def __repr__(self):
        return "<%s %s %s %r>" % (type(self).__name__, self._definition.name, self.state.value, dict(self.as_dict()))

    @property
    def _definition(self):
        return self._handle._wrapped_table

    def _slots(self):
        return [column.name for column in self._definition.columns]

    def _resolve(self, name):
        """Returns the (slot, column) pair for a column reference."""
        column = self._definition.column(name)
        return column.name, column

    def _attributes(self):
        return [(column.name, column.alias) for column in self._definition.columns]

    def __dir__(self):
        names = [name for column in self._definition.columns for name in column.names if name.isidentifier()]
        return list(super(Entity, self).__dir__()) + names

    def __getattr__(self, a):
        if a.startswith('_'):
            raise AttributeError(a)
        try:
            return self.get(a)
        except UnknownColumn:
            raise AttributeError("'%s' object for '%s' has no attribute or column '%s'" % (
                type(self).__name__, self._definition.name, a))

    def __setattr__(self, a, value):
        if a.startswith('_'):
            super(Entity, self).__setattr__(a, value)
        else:
            self.set(a, value)

    def __getitem__(self, name):
        return self.get(name)

    def __setitem__(self, name, value):
        self.set(name, value)

    def __contains__(self, name):
        try:
            self._resolve(name)
            return True
        except UnknownColumn:
            return False

    @property
    def state(self):
        if self._gone:
            return EntityState.gone
        if self._pending_delete:
            return EntityState.pending_delete
        if self._dirty:
            return EntityState.dirty
        return EntityState.clean

    @property
    def dirty_columns(self):
        """Names of the columns changed since the last commit, in order of first change."""
        return [self._column_label(slot) for slot in self._dirty]

    def _column_label(self, slot):
        return slot

    def _check_alive(self):
        if self._gone:
            raise EntityGone("%s of '%s' was deleted and is no longer tied to a row." % (
                type(self).__name__, self._definition.name))

    def get(self, name):
        """Returns the current value of a column."""
        self._check_alive()
        slot, _ = self._resolve(name)
        return self._values[slot]

    def set(self, name, value):
        """Validates and records a new column value, marking the column dirty.

        A rejected value leaves the entity unchanged.

        :param name: SQL name or alias of the column
        :param value: the new value
        """
        self._check_alive()
        slot, column = self._resolve(name)
        if not column.table.mutable:
            raise ReadOnlyView("Table '%s' is a read-only view." % column.table.name)
        if self._pending_delete:
            raise MutationError("%s of '%s' is pending deletion." % (type(self).__name__, self._definition.name))
        value = constraints.validate(column, value, self)
        self._values[slot] = value
        if slot not in self._dirty:
            self._dirty.append(slot)

    def as_dict(self):
        """Returns the column values keyed by attribute name."""
        return OrderedDict((attr, self._values[slot]) for slot, attr in self._attributes())

    def delete(self):
        """Marks the entity for deletion at the next commit."""
        self._check_alive()
        if not self._definition.mutable:
            raise ReadOnlyView("'%s' is a read-only view." % self._definition.name)
        self._pending_delete = True
        return self

    def _pins(self, table, values):
        """Returns (column, value) pairs identifying the row of `table`."""
        columns = table.key_columns or table.columns
        return [(column, values[column.name]) for column in columns]

    def _write_changes(self):
        table = self._definition
        changes = [(table.column(slot), self._values[slot]) for slot in self._dirty]
        return [statements.update(table, changes, self._pins(table, self._original))]

    def _write_delete(self):
        table = self._definition
        return statements.delete(table, pins=self._pins(table, self._original))

    def commit(self):
        """Writes pending changes.

        A dirty entity issues one UPDATE of its dirty columns and becomes
        clean. An entity pending deletion issues a DELETE and is demoted: the
        detached record of its last values is returned and the entity itself
        can no longer be used. A clean entity issues nothing.

        :return: this entity, or the detached record after a delete
        """
        self._check_alive()
        if self._pending_delete:
            sql, params = self._write_delete()
            count = self._storage.execute(sql, params)
            self._storage.commit_transaction()
            self._gone = True
            logger.debug("Deleted %d row(s) of '%s'" % (count, self._definition.name))
            return AttrDict(self.as_dict())
        if not self._dirty:
            return self
        for sql, params in self._write_changes():
            self._storage.execute(sql, params)
        self._storage.commit_transaction()
        self._original = OrderedDict(self._values)
        self._dirty = []
        return self


class JoinEntity (Entity):
    """A row of a join, spanning one row of each member table.

    Columns are addressed by any name the join plan resolves: a short name
    unique across the join, the long `member_column` form, or `member.column`.
    Committing issues one UPDATE per member table with dirty columns, and
    deleting removes only the primary table's row.
    """
    @property
    def _definition(self):
        return self._handle._wrapped_join

    @property
    def _plan(self):
        return self._definition.plan

    def _slots(self):
        return [(member.name, column.name) for member, column, _ in self._plan.selected]

    def _resolve(self, name):
        member, column = self._plan.resolve_column(name)
        return (member.name, column.name), column

    def _attributes(self):
        return [((member.name, column.name), attr) for member, column, attr in self._plan.selected]

    def _column_label(self, slot):
        return "%s.%s" % slot

    def __dir__(self):
        names = [attr for _, _, attr in self._plan.selected if attr.isidentifier()]
        return list(super(Entity, self).__dir__()) + names

    def _member_values(self, member, values):
        return dict((cname, value) for (mname, cname), value in values.items() if mname == member.name)

    def _write_changes(self):
        writes = []
        for member in self._plan.members.values():
            dirty = [slot for slot in self._dirty if slot[0] == member.name]
            if not dirty:
                continue
            changes = [(member.table.column(cname), self._values[(mname, cname)]) for mname, cname in dirty]
            pins = self._pins(member.table, self._member_values(member, self._original))
            writes.append(statements.update(member.table, changes, pins))
        return writes

    def _write_delete(self):
        primary = self._plan.primary
        return statements.delete(primary.table, pins=self._pins(primary.table, self._member_values(primary, self._original)))
