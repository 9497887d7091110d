# Tests for the datapath module.
#
# Runs against an in-memory SQLite database through SQLAlchemy.
#
# Environment variables:
#  ORMDECL_TEST_VERBOSE: set for verbose logging output to stdout

import logging
import os
import unittest

from sqlalchemy import create_engine

from ormdecl.core import Model, from_storage, connect, SqlAlchemyStorage, CriteriaError, TypeMismatch, \
    JoinNotInsertable, ReadOnlyView, UnknownTable, UnknownColumn, Entity, JoinEntity, raw

logger = logging.getLogger(__name__)
if os.getenv("ORMDECL_TEST_VERBOSE"):
    logger.setLevel(logging.DEBUG)
    logger.addHandler(logging.StreamHandler())

SNAME_SHOP = 'shop'
SNAME_REPORTS = 'reports'

DDL = [
    "CREATE TABLE items (id INTEGER PRIMARY KEY, val TEXT NOT NULL, status TEXT, qty INTEGER)",
    "CREATE TABLE orders (id INTEGER PRIMARY KEY, item_id INTEGER, note TEXT)",
    "CREATE TABLE events (kind TEXT, n INTEGER)",
    "CREATE TABLE notes (item_id INTEGER, body TEXT)",
]


def shop_declaration():
    return {
        'schema': SNAME_SHOP,
        'tables': [
            {
                'table': 'items',
                'primary': ['id'],
                'select_null_primary': 'SELECT last_insert_rowid()',
                'columns': [
                    {'sql_name': 'id', 'type': 'number'},
                    {'sql_name': 'val', 'type': 'string'},
                    {'sql_name': 'status'},
                    {'sql_name': 'qty', 'alias': 'quantity', 'type': 'nullable-number'},
                ]
            },
            {
                'table': 'orders',
                'primary': ['id'],
                'select_null_primary': 'SELECT last_insert_rowid()',
                'columns': [
                    {'sql_name': 'id', 'type': 'number'},
                    {'sql_name': 'item_id', 'type': 'nullable-number'},
                    {'sql_name': 'note'},
                ]
            },
            {
                'table': 'events',
                'group_by': 'kind',
                'columns': [{'sql_name': 'kind', 'type': 'string'}, {'sql_name': 'n', 'type': 'nullable-number'}]
            },
        ],
        'table_aliases': {'products': 'items'},
        'joins': [
            {'name': 'order_items', 'primary': 'orders', 'tables': [{'table': 'items', 'columns': {'item_id': 'id'}}]}
        ],
    }


def reports_declaration():
    return {
        'schema': SNAME_REPORTS,
        'tables': [{
            'table': 'notes',
            'join_clause': 'JOIN items ON notes.item_id = items.id',
            'columns': [{'sql_name': 'item_id', 'type': 'number'}, {'sql_name': 'body'}, {'sql_name': 'val'}]
        }]
    }


class RecordingStorage (SqlAlchemyStorage):
    """Storage recording every executed statement."""
    def __init__(self, engine):
        super(RecordingStorage, self).__init__(engine)
        self.executed = []

    def execute(self, sql, params=None):
        self.executed.append(sql)
        return super(RecordingStorage, self).execute(sql, params)


class DatapathTestBase (unittest.TestCase):

    def setUp(self):
        self.storage = RecordingStorage(create_engine('sqlite://'))
        for ddl in DDL:
            self.storage.execute(ddl)
        self.storage.commit_transaction()
        self.storage.executed.clear()
        self.model = Model()
        self.model.define(shop_declaration())
        self.model.define(reports_declaration())
        self.root = from_storage(self.storage, self.model)
        self.shop = self.root.schemas[SNAME_SHOP]
        self.items = self.shop.tables['items']

    def tearDown(self):
        self.storage.close()

    def populate_items(self, n=12, status=lambda i: 'a' if i % 2 else 'b'):
        self.items.bulk_create(['id', 'val', 'status', 'quantity'],
                               [[i, 'v%d' % i, status(i), i * 10] for i in range(1, n + 1)])


class HandleTests (DatapathTestBase):

    def test_schema_access(self):
        self.assertIs(self.model.schema(SNAME_SHOP), self.root.shop._wrapped_schema)
        self.assertIn('shop', dir(self.root))
        with self.assertRaises(AttributeError):
            self.root.nope
        with self.assertRaises(KeyError):
            self.root['nope']

    def test_table_access(self):
        self.assertEqual('items', self.shop.items.name)
        self.assertEqual('items', self.shop.products.name)
        self.assertEqual('items', self.shop['products'].name)
        self.assertIn('order_items', self.shop.joins)
        self.assertIn('events', dir(self.shop))
        with self.assertRaises(UnknownTable):
            self.shop['nope']

    def test_column_access(self):
        self.assertEqual('qty', str(self.items.quantity))
        self.assertIs(self.items.columns['qty'], self.items.columns['quantity'])
        with self.assertRaises(AttributeError):
            self.items.nope

    def test_added_table_visible(self):
        schema = self.model.schema(SNAME_SHOP)
        schema.create_table({'table': 'tags', 'columns': [{'sql_name': 'label'}]})
        self.assertEqual('tags', self.shop.tags.name)
        self.assertEqual('items', self.items.name)

    def test_with_storage(self):
        other = connect('sqlite://')
        try:
            handle = self.items.with_storage(other)
            self.assertIs(other, handle._storage)
            self.assertIs(self.storage, self.items._storage)
            self.assertIs(self.items._wrapped_table, handle._wrapped_table)
        finally:
            other.close()

    def test_select_sql(self):
        sql, params = self.items.select_sql(['id', 'ge', 5], limit=2, offset=1, order_by=self.items.quantity.desc)
        self.assertEqual("SELECT id AS id, val AS val, status AS status, qty AS quantity FROM items "
                         "WHERE id >= ? ORDER BY qty DESC LIMIT 2 OFFSET 1", sql)
        self.assertEqual([5], params)

    def test_offset_requires_limit(self):
        with self.assertRaises(CriteriaError):
            self.items.select_sql(offset=3)


class SearchTests (DatapathTestBase):

    def setUp(self):
        super(SearchTests, self).setUp()
        self.populate_items()

    def test_range(self):
        rows = self.items.search(['id', 'ge', 5, 'id', 'le', 10], order_by='id')
        self.assertEqual([5, 6, 7, 8, 9, 10], [row.id for row in rows])
        self.assertTrue(all(isinstance(row, Entity) for row in rows))

    def test_or_groups(self):
        self.storage.execute("UPDATE items SET status = 'c' WHERE id > 10")
        self.storage.commit_transaction()
        rows = self.items.search(['status', 'eq', 'a'], ['status', 'eq', 'b'])
        self.assertEqual(10, len(rows))
        self.assertEqual({'a', 'b'}, set(row.status for row in rows))

    def test_predicates(self):
        c = self.items
        rows = self.items.search((c.id > 2) & (c.quantity <= 50), order_by=[c.id.desc])
        self.assertEqual([5, 4, 3], [row.id for row in rows])
        self.assertEqual([1, 12], sorted(row.id for row in self.items.search((c.id == 1) | (c.id == 12))))
        self.assertEqual(10, len(self.items.search(c.id.notin([1, 2]))))

    def test_column_wrapper_in_triple(self):
        c = self.items
        self.assertEqual([11, 12], [row.id for row in self.items.search([(c.id, 'ge', 11)], order_by='id')])
        self.assertEqual(2, self.items.size([c.id, 'le', 2]))

    def test_directive_groups(self):
        rows = self.items.search(['order by', 'id'], ['limit by', 3, 2])
        self.assertEqual([4, 5], [row.id for row in rows])

    def test_limit(self):
        self.assertEqual([1, 2, 3], [row.id for row in self.items.search(limit=3, order_by='id')])
        self.assertEqual([12, 11], [row.id for row in self.items.search(limit=2, order_by='id desc')])

    def test_raw_and_null(self):
        self.storage.execute("UPDATE items SET status = NULL WHERE id = 3")
        self.storage.commit_transaction()
        self.assertEqual([3], [row.id for row in self.items.search(self.items.status == None)])
        self.assertEqual([3], [row.id for row in self.items.search(['id', 'lt', raw('2 + 2'), 'status', 'isnull', None])])

    def test_in_subselect(self):
        self.orders = self.shop.orders
        self.orders.create(item_id=4, note='x')
        rows = self.items.search(['id', 'in', raw('SELECT item_id FROM orders')])
        self.assertEqual([4], [row.id for row in rows])

    def test_size(self):
        self.assertEqual(12, self.items.size())
        self.assertEqual(6, self.items.size(['status', 'eq', 'a']))
        self.assertEqual(0, self.items.size(['id', 'in', []]))

    def test_group_by_size(self):
        events = self.shop.events
        self.assertEqual(3, events.bulk_create(['kind', 'n'], [['x', 1], ['x', 2], ['y', 3]]))
        self.assertEqual(2, events.size())
        self.assertEqual(1, events.size(['n', 'gt', 1, 'kind', 'eq', 'x']))

    def test_unknown_column(self):
        with self.assertRaises(UnknownColumn):
            self.items.search(['price', 'eq', 1])

    def test_delete(self):
        self.assertEqual(2, self.items.delete(['id', 'le', 2]))
        self.assertEqual(10, self.items.size())
        self.assertEqual(10, self.items.delete())
        self.assertEqual(0, self.items.size())


class CreateTests (DatapathTestBase):

    def test_round_trip(self):
        created = self.items.create({'val': 'hello', 'quantity': 3}, status='new')
        self.assertEqual(1, created.id)
        found = self.items.search(['id', 'eq', created.id])
        self.assertEqual(1, len(found))
        self.assertEqual(
            {'id': 1, 'val': 'hello', 'status': 'new', 'quantity': 3},
            dict(found[0].as_dict())
        )
        self.assertEqual(dict(created.as_dict()), dict(found[0].as_dict()))

    def test_create_issues_one_insert(self):
        self.items.create(val='a')
        self.assertEqual(["INSERT INTO items (val) VALUES (?)"], self.storage.executed)

    def test_validation_before_sql(self):
        with self.assertRaises(TypeMismatch):
            self.items.create(val='a', quantity='many')
        self.assertEqual([], self.storage.executed)
        self.assertEqual(0, self.items.size())

    def test_create_only(self):
        self.items.create(id=1, val='first')
        with self.assertLogs('ormdecl.core.datapath', level='WARNING') as cm:
            results = self.items.create_only([{'val': 'a'}, {'val': None}, {'id': 1, 'val': 'dup'}])
        self.assertEqual([True, False, False], results)
        self.assertEqual(2, len(cm.output))
        self.assertEqual(2, self.items.size())

    def test_create_only_unknown_column(self):
        with self.assertLogs('ormdecl.core.datapath', level='WARNING') as cm:
            results = self.items.create_only([{'val': 'a'}, {'nope': 1}, {'val': 'b'}])
        self.assertEqual([True, False, True], results)
        self.assertEqual(1, len(cm.output))
        self.assertIn("nope", cm.output[0])
        self.assertEqual(['a', 'b'], sorted(row.val for row in self.items.search()))

    def test_bulk_create(self):
        self.assertEqual(2, self.items.bulk_create(['val', 'qty'], [['a', 1], ['b', 2]]))
        self.assertEqual(0, self.items.bulk_create(['val'], []))
        self.assertEqual(2, self.items.size())


class JoinTests (DatapathTestBase):

    def setUp(self):
        super(JoinTests, self).setUp()
        self.order_items = self.shop.order_items

    def test_create_threads_keys(self):
        row = self.order_items.create(val='widget', quantity=2, note='rush')
        self.assertIsInstance(row, JoinEntity)
        self.assertEqual(row.items_id, row.item_id)
        self.assertEqual('widget', row.val)
        self.assertEqual('rush', row['orders.note'])
        self.assertEqual(1, self.shop.orders.size(['item_id', 'eq', row.items_id]))
        self.assertEqual(["INSERT INTO items (val, qty) VALUES (?, ?)", "INSERT INTO orders (note, item_id) VALUES (?, ?)"],
                         self.storage.executed)

    def test_search_and_size(self):
        self.order_items.create(val='a', note='one')
        self.order_items.create(val='b', note='two')
        self.items.create(val='unordered')
        self.assertEqual(2, self.order_items.size())
        rows = self.order_items.search(self.order_items.columns['val'] == 'b')
        self.assertEqual(['two'], [row.note for row in rows])
        self.assertEqual(['a', 'b'], [row.val for row in self.order_items.search(order_by='items.val')])
        rows = self.order_items.search([self.order_items.columns['val'], 'eq', 'b'])
        self.assertEqual(['two'], [row.note for row in rows])

    def test_commit_updates_each_member(self):
        row = self.order_items.create(val='a', note='one')
        self.storage.executed.clear()
        row.val = 'A'
        row.note = 'ONE'
        self.assertEqual(['orders.note', 'items.val'], sorted(row.dirty_columns, reverse=True))
        row.commit()
        self.assertEqual(2, len(self.storage.executed))
        again = self.order_items.search(['orders.id', 'eq', row.orders_id])[0]
        self.assertEqual(('A', 'ONE'), (again.val, again.note))

    def test_delete_removes_primary_rows(self):
        self.order_items.create(val='a', note='one')
        self.order_items.create(val='b', note='two')
        self.assertEqual(1, self.order_items.delete(['note', 'eq', 'one']))
        self.assertEqual(1, self.shop.orders.size())
        self.assertEqual(2, self.items.size())

    def test_not_insertable(self):
        self.model.schema(SNAME_SHOP).create_join({
            'name': 'by_val', 'primary': 'orders', 'tables': [{'table': 'items', 'columns': {'note': 'val'}}]
        })
        with self.assertRaises(JoinNotInsertable):
            self.shop.by_val.create(note='x')
        self.assertEqual([], self.storage.executed)
        with self.assertRaises(JoinNotInsertable):
            self.order_items.bulk_create(['val'], [['a']])


class ViewTests (DatapathTestBase):

    def setUp(self):
        super(ViewTests, self).setUp()
        self.items.create(val='thing')
        self.storage.execute("INSERT INTO notes (item_id, body) VALUES (1, 'remember')")
        self.storage.commit_transaction()
        self.notes = self.root[SNAME_REPORTS].notes

    def test_search(self):
        rows = self.notes.search()
        self.assertEqual([('remember', 'thing')], [(row.body, row.val) for row in rows])

    def test_read_only(self):
        row = self.notes.search()[0]
        with self.assertRaises(ReadOnlyView):
            row.body = 'forget'
        with self.assertRaises(ReadOnlyView):
            row.delete()
        with self.assertRaises(ReadOnlyView):
            self.notes.create(item_id=1, body='more')
        with self.assertRaises(ReadOnlyView):
            self.notes.delete()

    def test_create_only_on_view(self):
        with self.assertLogs('ormdecl.core.datapath', level='WARNING'):
            self.assertEqual([False], self.notes.create_only([{'item_id': 1, 'body': 'more'}]))
        self.assertEqual(1, self.notes.size())


if __name__ == '__main__':
    unittest.main()
