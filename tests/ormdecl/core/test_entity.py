# Tests for the entity module.
#
# Environment variables:
#  ORMDECL_TEST_VERBOSE: set for verbose logging output to stdout

import logging
import os
import unittest

from sqlalchemy import create_engine

from ormdecl.core import Model, from_storage, SqlAlchemyStorage, EntityState, EntityGone, MutationError, \
    TypeMismatch, PatternMismatch, UnknownColumn

logger = logging.getLogger(__name__)
if os.getenv("ORMDECL_TEST_VERBOSE"):
    logger.setLevel(logging.DEBUG)
    logger.addHandler(logging.StreamHandler())


class CountingStorage (SqlAlchemyStorage):
    """Storage counting executed statements by verb."""
    def __init__(self, engine):
        super(CountingStorage, self).__init__(engine)
        self.counts = {}

    def execute(self, sql, params=None):
        verb = sql.split(None, 1)[0].upper()
        self.counts[verb] = self.counts.get(verb, 0) + 1
        return super(CountingStorage, self).execute(sql, params)


class EntityTests (unittest.TestCase):

    def setUp(self):
        self.storage = CountingStorage(create_engine('sqlite://'))
        self.storage.execute("CREATE TABLE things (id INTEGER PRIMARY KEY, val TEXT NOT NULL, qty INTEGER, code TEXT)")
        self.storage.execute("CREATE TABLE tags (label TEXT, weight INTEGER)")
        self.storage.commit_transaction()
        model = Model()
        model.define({
            'schema': 'store',
            'tables': [
                {
                    'table': 'things',
                    'primary': ['id'],
                    'select_null_primary': 'SELECT last_insert_rowid()',
                    'columns': [
                        {'sql_name': 'id', 'type': 'number'},
                        {'sql_name': 'val', 'type': 'string'},
                        {'sql_name': 'qty', 'alias': 'quantity', 'type': 'number'},
                        {'sql_name': 'code', 'matches': '^[a-z]+$'},
                    ]
                },
                {'table': 'tags', 'columns': [{'sql_name': 'label'}, {'sql_name': 'weight', 'type': 'nullable-number'}]},
            ]
        })
        self.store = from_storage(self.storage, model).store
        self.things = self.store.things
        self.thing = self.things.create(val='a', quantity=1, code='abc')
        self.storage.counts.clear()

    def tearDown(self):
        self.storage.close()

    def test_access(self):
        self.assertEqual('a', self.thing.val)
        self.assertEqual(1, self.thing['qty'])
        self.assertEqual(1, self.thing.quantity)
        self.assertEqual(1, self.thing.get('quantity'))
        self.assertIn('quantity', self.thing)
        self.assertNotIn('price', self.thing)
        self.assertIn('quantity', dir(self.thing))
        with self.assertRaises(AttributeError):
            self.thing.price
        with self.assertRaises(UnknownColumn):
            self.thing['price']

    def test_set_marks_dirty(self):
        self.assertEqual(EntityState.clean, self.thing.state)
        self.thing.val = 'b'
        self.thing['quantity'] = 5
        self.thing.qty = 6
        self.assertEqual(EntityState.dirty, self.thing.state)
        self.assertEqual(['val', 'qty'], self.thing.dirty_columns)
        self.assertEqual(6, self.thing.quantity)
        self.assertEqual({}, self.storage.counts)

    def test_rejected_value_leaves_entity_unchanged(self):
        self.thing.val = 'b'
        with self.assertRaises(TypeMismatch):
            self.thing.quantity = 'abc'
        with self.assertRaises(PatternMismatch):
            self.thing.code = 'ABC'
        self.assertEqual(['val'], self.thing.dirty_columns)
        self.assertEqual(1, self.thing.quantity)
        self.assertEqual('abc', self.thing.code)

    def test_commit_is_one_update(self):
        self.thing.val = 'b'
        self.thing.quantity = 7
        self.assertIs(self.thing, self.thing.commit())
        self.assertEqual({'UPDATE': 1}, self.storage.counts)
        self.assertEqual(EntityState.clean, self.thing.state)
        self.thing.commit()
        self.assertEqual({'UPDATE': 1}, self.storage.counts)
        found = self.things.search(['id', 'eq', self.thing.id])[0]
        self.assertEqual(('b', 7), (found.val, found.quantity))

    def test_commit_clean_is_noop(self):
        self.thing.commit()
        self.assertEqual({}, self.storage.counts)

    def test_update_of_key(self):
        old_id = self.thing.id
        self.thing.id = 40
        self.thing.commit()
        self.assertEqual(0, self.things.size(['id', 'eq', old_id]))
        self.assertEqual(1, self.things.size(['id', 'eq', 40]))

    def test_delete(self):
        other = self.things.create(val='other', quantity=2, code='x')
        self.storage.counts.clear()
        self.assertIs(self.thing, self.thing.delete())
        self.assertEqual(EntityState.pending_delete, self.thing.state)
        with self.assertRaises(MutationError):
            self.thing.val = 'c'
        record = self.thing.commit()
        self.assertEqual({'DELETE': 1}, self.storage.counts)
        self.assertEqual(EntityState.gone, self.thing.state)
        self.assertEqual('a', record.val)
        self.assertEqual(1, record.quantity)
        self.assertEqual([other.id], [row.id for row in self.things.search()])

    def test_gone(self):
        self.thing.delete().commit()
        with self.assertRaises(EntityGone):
            self.thing.val
        with self.assertRaises(EntityGone):
            self.thing.val = 'c'
        with self.assertRaises(EntityGone):
            self.thing.commit()
        with self.assertRaises(EntityGone):
            self.thing.delete()

    def test_discarded_changes_are_lost(self):
        self.thing.val = 'lost'
        found = self.things.search(['id', 'eq', self.thing.id])[0]
        self.assertEqual('a', found.val)

    def test_table_without_key_pins_full_row(self):
        tags = self.store.tags
        tags.bulk_create(['label', 'weight'], [['x', 1], ['x', None], ['y', 1]])
        tag = tags.search(['label', 'eq', 'x', 'weight', 'isnull', None])[0]
        tag.weight = 5
        tag.commit()
        self.assertEqual([('x', 1), ('x', 5), ('y', 1)],
                         sorted((row.label, row.weight) for row in tags.search()))
        tag.delete().commit()
        self.assertEqual(2, tags.size())

    def test_as_dict(self):
        self.assertEqual(['id', 'val', 'quantity', 'code'], list(self.thing.as_dict()))


if __name__ == '__main__':
    unittest.main()
