# Tests for the orm_config module.

import json
import os
import shutil
import tempfile
import unittest

from ormdecl.core import DeclarationError
from ormdecl.core.orm_config import normalize_declaration, validate_declaration, check_declaration, \
    load_declaration, resolve_callable, compile_pattern


class DeclarationConfigTests (unittest.TestCase):

    def setUp(self):
        self.tempdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tempdir)

    def _write(self, name, text):
        path = os.path.join(self.tempdir, name)
        with open(path, 'w') as f:
            f.write(text)
        return path

    def test_normalize(self):
        doc = normalize_declaration({'schema name': 's', 'table aliases': {'a': 't'}, 'tables': ({'table': 't'},)})
        self.assertEqual(['schema', 'table_aliases', 'tables'], list(doc))
        self.assertEqual([{'table': 't'}], doc['tables'])

    def test_normalize_requires_mapping(self):
        with self.assertRaises(DeclarationError):
            normalize_declaration(['schema'])

    def test_validate(self):
        self.assertEqual([], validate_declaration({'schema': 's', 'tables': [{'table': 't'}]}))
        errors = validate_declaration({'schema': 's', 'tables': [{'table': 't', 'colums': []}]})
        self.assertEqual(1, len(errors))
        self.assertEqual(['tables', 0], list(errors[0].absolute_path))

    def test_missing_schema_name(self):
        self.assertTrue(validate_declaration({'tables': []}))
        with self.assertRaises(DeclarationError):
            check_declaration({'tables': []})

    def test_bad_column_type(self):
        with self.assertRaises(DeclarationError) as cm:
            check_declaration({'schema': 's', 'tables': [{'table': 't', 'columns': [{'sql_name': 'c', 'type': 'int'}]}]})
        self.assertIn('tables/0/columns/0/type', str(cm.exception))

    def test_column_type_is_case_sensitive(self):
        for spelling in ['Number', 'NULLABLE-string', ' number']:
            errors = validate_declaration(
                {'schema': 's', 'tables': [{'table': 't', 'columns': [{'sql_name': 'c', 'type': spelling}]}]})
            self.assertTrue(errors, spelling)
        self.assertEqual([], validate_declaration(
            {'schema': 's', 'tables': [{'table': 't', 'columns': [{'sql_name': 'c', 'type': 'nullable_number'}]}]}))

    def test_load(self):
        path = self._write('decl.json', json.dumps({'schema name': 's', 'tables': [{'table': 't'}]}))
        doc = load_declaration(path)
        self.assertEqual('s', doc['schema'])

    def test_load_bad_json(self):
        path = self._write('bad.json', '{"schema": ')
        with self.assertRaises(DeclarationError):
            load_declaration(path)

    def test_load_missing_file(self):
        with self.assertRaises(OSError):
            load_declaration(os.path.join(self.tempdir, 'missing.json'))

    def test_resolve_callable(self):
        self.assertIs(os.path.join, resolve_callable('os.path:join'))
        self.assertIs(os.path.join, resolve_callable('os.path.join'))
        self.assertIs(len, resolve_callable(len))
        self.assertIsNone(resolve_callable(None))

    def test_resolve_callable_errors(self):
        for ref in ['nomodule_here:fn', 'os.path:nope', 'os.sep', 'join', 5]:
            with self.assertRaises(DeclarationError):
                resolve_callable(ref)

    def test_compile_pattern(self):
        self.assertIsNone(compile_pattern(None))
        pattern = compile_pattern('^a')
        self.assertIs(pattern, compile_pattern(pattern))
        self.assertTrue(pattern.search('abc'))
        with self.assertRaises(DeclarationError):
            compile_pattern('(')


if __name__ == '__main__':
    unittest.main()
