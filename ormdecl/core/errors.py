"""Exception classes raised by the declarative mapping layer.

Validation and resolution errors are raised before any statement reaches the
storage collaborator. Only `StorageError` reports something that happened
inside the database driver; its `reason` holds the original driver exception.
"""


class OrmException (Exception):
    """Base class of all errors raised by this package.
    """
    def __init__(self, message, reason=None):
        super(OrmException, self).__init__(message, reason)
        self.message = message
        self.reason = reason

    def __str__(self):
        return self.message


class ModelError (OrmException):
    """Errors in the declared model or in name lookups against it."""
    pass


class DeclarationError (ModelError):
    """A schema declaration is malformed."""
    pass


class DuplicateSchema (ModelError):
    """A schema with the same name is already registered."""
    pass


class UnknownSchema (ModelError, KeyError):
    """No schema is registered under the requested name."""
    pass


class UnknownTable (ModelError, KeyError):
    """No table or join of a schema resolves from the requested name."""
    pass


class UnknownColumn (ModelError, KeyError):
    """No column resolves from the requested name or alias."""
    pass


class ValidationError (OrmException):
    """A proposed column value was rejected.

    :param column: the canonical SQL name of the column
    :param value: the rejected value
    """
    def __init__(self, message, column=None, value=None, reason=None):
        super(ValidationError, self).__init__(message, reason)
        self.column = column
        self.value = value


class ConstraintViolation (ValidationError):
    """A declared custom rule rejected the value."""
    pass


class PatternMismatch (ValidationError):
    """The value does not match the declared pattern."""
    pass


class TypeMismatch (ValidationError):
    """The value is not acceptable for the declared semantic type."""
    pass


class JoinResolutionError (ModelError):
    """A join definition cannot be turned into a connected join plan."""
    pass


class DisconnectedJoin (JoinResolutionError):
    """Some table of a join cannot be reached from its primary table."""
    pass


class UnresolvedSecondaryReference (JoinResolutionError):
    """An `on_secondary` link names a table not yet linked into the join."""
    pass


class MutationError (OrmException):
    """A mutation was requested on something that cannot be mutated."""
    pass


class JoinNotInsertable (MutationError):
    """Rows cannot be created through this join."""
    pass


class ReadOnlyView (MutationError):
    """The table is a literal join-clause view and is read only."""
    pass


class EntityGone (MutationError):
    """The entity was deleted and committed and is no longer tied to a row."""
    pass


class CriteriaError (OrmException):
    """A search expression is malformed."""
    pass


class StorageError (OrmException):
    """The storage collaborator reported an error; see `reason`."""
    pass
