"""Loading and validating declarative schema documents."""

import json
import logging
import pkgutil
import re
from collections import OrderedDict
from collections.abc import Mapping
from importlib import import_module

import jsonschema

from .errors import DeclarationError

logger = logging.getLogger(__name__)

_key_aliases = {
    'schema name': 'schema',
    'schema_name': 'schema',
    'limit clause template': 'limit_clause',
    'limit clause': 'limit_clause',
    'table aliases': 'table_aliases',
}
"""Alternative spellings accepted for the top-level declaration keys"""

_declaration_schema = None


def _get_declaration_schema():
    global _declaration_schema
    if _declaration_schema is None:
        s = pkgutil.get_data(__package__, 'schemas/declaration.schema.json').decode()
        _declaration_schema = json.loads(s)
    return _declaration_schema


def _plain(doc):
    """Returns a copy of `doc` where mappings are dicts and tuples are lists.

    Leaf values such as callables and compiled patterns are kept as they are.
    """
    if isinstance(doc, Mapping):
        return OrderedDict((k, _plain(v)) for k, v in doc.items())
    if isinstance(doc, (list, tuple)):
        return [_plain(v) for v in doc]
    return doc


def normalize_declaration(doc):
    """Returns a normalized copy of a declaration document.

    :param doc: a declaration mapping
    :return: an OrderedDict using the canonical top-level key names
    """
    if not isinstance(doc, Mapping):
        raise DeclarationError("declaration must be a mapping, not %s" % type(doc).__name__)
    normalized = OrderedDict()
    for k, v in _plain(doc).items():
        normalized[_key_aliases.get(k, k)] = v
    return normalized


def validate_declaration(doc):
    """Validate a declaration document against the declaration JSON schema.

    :param doc: a declaration mapping (normalized or not)
    :return: a list of validation errors, if any
    """
    doc = normalize_declaration(doc)
    validator = jsonschema.Draft7Validator(_get_declaration_schema())
    errors = sorted(validator.iter_errors(doc), key=lambda e: list(e.absolute_path))
    for e in errors:
        logger.debug("Declaration error at '%s': %s" % ("/".join(str(p) for p in e.absolute_path), e.message))
    return errors


def check_declaration(doc):
    """Normalize and validate a declaration, raising on the first error.

    :param doc: a declaration mapping
    :return: the normalized declaration
    """
    doc = normalize_declaration(doc)
    errors = validate_declaration(doc)
    if errors:
        e = errors[0]
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise DeclarationError("Invalid declaration for schema '%s' at %s: %s" % (doc.get('schema'), where, e.message), e)
    return doc


def load_declaration(path):
    """Reads a declaration document from a JSON file.

    :param path: path to the JSON file
    :return: the normalized (but not yet validated) declaration
    """
    try:
        with open(path, encoding='utf-8') as df:
            doc = json.load(df, object_pairs_hook=OrderedDict)
    except ValueError as e:
        raise DeclarationError("Unable to parse declaration file %s: %s" % (path, e), e)
    return normalize_declaration(doc)


def resolve_callable(ref):
    """Resolve a constraint reference to a callable.

    :param ref: None, a callable, or a string of the form 'package.module:function' or 'package.module.function'
    :return: the callable, or None
    """
    if ref is None or callable(ref):
        return ref
    if not isinstance(ref, str):
        raise DeclarationError("Constraint must be callable or a dotted reference, not %r" % (ref,))
    if ':' in ref:
        module_name, attr_name = ref.split(':', 1)
    else:
        module_name, _, attr_name = ref.rpartition('.')
    if not module_name or not attr_name:
        raise DeclarationError("Invalid constraint reference: %s" % ref)
    try:
        fn = getattr(import_module(module_name), attr_name)
    except (ImportError, AttributeError) as e:
        raise DeclarationError("Unable to import constraint %s" % ref, e)
    if not callable(fn):
        raise DeclarationError("Constraint %s is not callable" % ref)
    return fn


def compile_pattern(pattern):
    """Compile a declared column pattern; compiled patterns pass through."""
    if pattern is None or hasattr(pattern, 'search'):
        return pattern
    try:
        return re.compile(pattern)
    except re.error as e:
        raise DeclarationError("Invalid pattern %r: %s" % (pattern, e), e)
