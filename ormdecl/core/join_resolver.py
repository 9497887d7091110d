"""Resolution of join definitions into connected join plans.

A join is resolved by walking its links in declaration order, starting from
the primary table. Each link joins a new table instance to the primary table,
or to an `on_secondary` table that an earlier link already brought in. The
resulting `JoinPlan` knows the FROM entries, the column equalities to AND into
every WHERE clause, and how to qualify a short or long column name.
"""

import logging
from collections import OrderedDict

from .errors import DisconnectedJoin, UnresolvedSecondaryReference, UnknownColumn, JoinNotInsertable
from .utils.core_utils import topo_sorted

logger = logging.getLogger(__name__)


class JoinMember (object):
    """A table instance within a join, named as the join declaration names it.
    """
    def __init__(self, name, table):
        self.name = name
        self.table = table

    def __repr__(self):
        return "<%s.%s %r (%s)>" % (type(self).__module__, type(self).__name__, self.name, self.table.name)

    @property
    def from_entry(self):
        if self.name == self.table.name:
            return self.table.name
        return "%s AS %s" % (self.table.name, self.name)

    def qualify(self, column):
        return "%s.%s" % (self.name, column.name)


class JoinEquality (object):
    """Equality of a column of one join member with a column of another.
    """
    def __init__(self, source, source_column, target, target_column):
        self.source = source
        self.source_column = source_column
        self.target = target
        self.target_column = target_column

    def __str__(self):
        return "%s = %s" % (self.source.qualify(self.source_column), self.target.qualify(self.target_column))


class JoinEdge (object):
    """All equalities contributed by one link, from the linking member to the linked member."""
    def __init__(self, source, target, equalities):
        self.source = source
        self.target = target
        self.equalities = equalities


class JoinPlan (object):
    """A connected join plan rooted at the join's primary table.
    """
    def __init__(self, join, members, edges):
        self.join = join
        self.members = members
        self.edges = edges
        self._short_names = {}
        for member in members.values():
            for column in member.table.columns:
                for name in column.names:
                    self._short_names.setdefault(name, []).append((member, column))

    def __repr__(self):
        return "<%s.%s %r members=%r>" % (type(self).__module__, type(self).__name__, self.join.name, list(self.members))

    @property
    def primary(self):
        return next(iter(self.members.values()))

    @property
    def equalities(self):
        return [eq for edge in self.edges for eq in edge.equalities]

    @property
    def from_entries(self):
        return [member.from_entry for member in self.members.values()]

    @property
    def from_clause(self):
        return ", ".join(self.from_entries)

    @property
    def join_condition(self):
        """The conjunction of all join equalities, or '' for a single-table join."""
        return " AND ".join(str(eq) for eq in self.equalities)

    def is_ambiguous(self, name):
        return len(self._short_names.get(name, [])) > 1

    def attribute_name(self, member, column):
        """Name under which a joined column appears in result rows.

        The column alias is used when it is unambiguous across the join,
        otherwise the long `member_alias` form.
        """
        if self.is_ambiguous(column.alias):
            return "%s_%s" % (member.name, column.alias)
        return column.alias

    @property
    def selected(self):
        """List of (member, column, attribute name) for every column of every member."""
        return [
            (member, column, self.attribute_name(member, column))
            for member in self.members.values()
            for column in member.table.columns
        ]

    def resolve_column(self, name):
        """Resolves a column reference to its (member, column) pair.

        Accepted forms are a short name (SQL name or alias) that is unique
        across the join, the long form `member_column`, and the dotted form
        `member.column`.
        """
        if isinstance(name, str) and '.' in name:
            mname, cname = name.split('.', 1)
            member = self.members.get(mname)
            if member is not None and member.table.has_column(cname):
                return member, member.table.column(cname)
        candidates = self._short_names.get(name, [])
        if len(candidates) == 1:
            return candidates[0]
        if isinstance(name, str):
            for mname in sorted(self.members, key=len, reverse=True):
                prefix = mname + '_'
                if name.startswith(prefix) and self.members[mname].table.has_column(name[len(prefix):]):
                    member = self.members[mname]
                    return member, member.table.column(name[len(prefix):])
        if candidates:
            raise UnknownColumn("Column '%s' is ambiguous in join '%s'; use one of: %s." % (
                name, self.join.name, ", ".join("%s_%s" % (m.name, name) for m, _ in candidates)))
        raise UnknownColumn("Join '%s' has no column '%s'." % (self.join.name, name))

    def qualify(self, name):
        """Returns the fully-qualified SQL name for a column reference."""
        member, column = self.resolve_column(name)
        return member.qualify(column)

    def insertion_order(self):
        """Returns the members in the order their rows must be inserted.

        Every linked column must be the linked table's single primary key
        column, generated by the database and recoverable with its
        `select_null_primary` query. A member is inserted after every member
        it links to, so their generated keys can be threaded into its row.
        """
        for edge in self.edges:
            target = edge.target.table
            key = [c.name for c in target.key_columns]
            linked = [eq.target_column.name for eq in edge.equalities]
            if len(key) != 1 or linked != key:
                raise JoinNotInsertable("Join '%s' links '%s' on %s, which is not its primary key." % (
                    self.join.name, edge.target.name, ", ".join(linked)))
            if not target.select_null_primary:
                raise JoinNotInsertable("Join '%s' links '%s' whose primary key is not generated." % (
                    self.join.name, edge.target.name))
        depmap = OrderedDict((name, set()) for name in self.members)
        for edge in self.edges:
            if edge.source.name != edge.target.name:
                depmap[edge.source.name].add(edge.target.name)
        try:
            return [self.members[name] for name in topo_sorted(depmap)]
        except ValueError as e:
            raise JoinNotInsertable("Join '%s' has cyclic links." % self.join.name, e)


def resolve(join):
    """Resolve a join definition.

    :param join: an orm_model.Join
    :return: a JoinPlan
    """
    schema = join.schema
    primary = JoinMember(join.primary_name, schema.table(join.primary_name))
    members = OrderedDict([(primary.name, primary)])
    referenced = [primary.name]
    edges = []

    for link in join.links:
        referenced.append(link.table_name)
        source_name = link.on_secondary or primary.name
        if source_name not in members:
            raise UnresolvedSecondaryReference(
                "Join '%s' links '%s' on secondary '%s' before '%s' is linked." % (
                    join.name, link.table_name, source_name, source_name))
        source = members[source_name]
        target = members.get(link.table_name) or JoinMember(link.table_name, link.table)
        equalities = [
            JoinEquality(source, source.table.column(scol), target, target.table.column(tcol))
            for scol, tcol in link.columns.items()
        ]
        if not equalities:
            logger.debug("Join '%s' link to '%s' has no column equalities" % (join.name, link.table_name))
            continue
        edges.append(JoinEdge(source, target, equalities))
        members.setdefault(target.name, target)

    missing = [name for name in referenced if name not in members]
    if missing:
        raise DisconnectedJoin("Join '%s' cannot reach table(s) %s from '%s'." % (
            join.name, ", ".join(sorted(set(missing))), primary.name))

    logger.debug("Resolved join '%s' over %s" % (join.name, ", ".join(members)))
    return JoinPlan(join, members, edges)
