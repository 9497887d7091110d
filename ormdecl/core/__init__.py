__version__ = "0.1.0"

from ormdecl.core.utils.core_utils import *
from ormdecl.core.errors import OrmException, ModelError, DeclarationError, DuplicateSchema, UnknownSchema, \
    UnknownTable, UnknownColumn, ValidationError, ConstraintViolation, PatternMismatch, TypeMismatch, \
    JoinResolutionError, DisconnectedJoin, UnresolvedSecondaryReference, MutationError, JoinNotInsertable, \
    ReadOnlyView, EntityGone, CriteriaError, StorageError
from ormdecl.core.orm_model import Model, Schema, Table, Column, Key, Join, builtin_types, registry, define
from ormdecl.core.criteria import raw
from ormdecl.core.entity import Entity, JoinEntity, EntityState
from ormdecl.core.storage import Storage, SqlAlchemyStorage, DbapiStorage, connect
from ormdecl.core.datapath import from_storage
from ormdecl.core.base_cli import BaseCLI
