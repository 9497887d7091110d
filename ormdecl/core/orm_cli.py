import argparse
import json
import logging
import sys

from ormdecl.core import __version__ as VERSION, BaseCLI, OrmException, StorageError, get_credential, \
    read_config, format_exception, stob
from ormdecl.core.datapath import from_storage
from ormdecl.core.orm_config import load_declaration, validate_declaration
from ormdecl.core.orm_model import Model
from ormdecl.core.storage import connect
from ormdecl.core.utils import eprint


class OrmCLIException (Exception):
    """Base exception class for OrmCLI.
    """
    def __init__(self, message):
        """Initializes the exception.
        """
        super(OrmCLIException, self).__init__(message)


class UsageException (OrmCLIException):
    """Usage exception.
    """
    def __init__(self, message):
        """Initializes the exception.
        """
        super(UsageException, self).__init__(message)


def _json_group(value):
    try:
        group = json.loads(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError("invalid criteria group %r: %s" % (value, e))
    if not isinstance(group, list):
        raise argparse.ArgumentTypeError("criteria group must be a JSON array: %r" % value)
    return group


class OrmCLI (BaseCLI):
    """Declarative ORM Command-line Interface.
    """
    def __init__(self, description, epilog):
        """Initializes the CLI.
        """
        super(OrmCLI, self).__init__(description, epilog, VERSION, declaration_required=True)

        # initialized after argument parsing
        self.args = None
        self.model = None
        self.schema = None
        self.storage = None

        subparsers = self.parser.add_subparsers(title='sub-commands', dest='subcmd')

        # validate parser
        validate_parser = subparsers.add_parser('validate', help="Validate the declaration file.")
        validate_parser.set_defaults(func=self.validate, needs_storage=False)

        # sql parser
        sql_parser = subparsers.add_parser('sql', help="Print the SELECT statement a search would run.")
        self._add_search_arguments(sql_parser)
        sql_parser.set_defaults(func=self.sql, needs_storage=False)

        # search parser
        search_parser = subparsers.add_parser('search', help="Print matching rows as JSON.")
        self._add_search_arguments(search_parser)
        search_parser.set_defaults(func=self.search, needs_storage=True)

        # size parser
        size_parser = subparsers.add_parser('size', help="Print the number of matching rows.")
        size_parser.add_argument("table", metavar="<table>", help="Table or join name.")
        size_parser.add_argument("-g", "--group", metavar="<json array>", action="append", default=[],
                                 type=_json_group, help="Criteria group; repeat to OR several groups.")
        size_parser.set_defaults(func=self.size, needs_storage=True)

    @staticmethod
    def _add_search_arguments(parser):
        parser.add_argument("table", metavar="<table>", help="Table or join name.")
        parser.add_argument("-g", "--group", metavar="<json array>", action="append", default=[],
                            type=_json_group,
                            help="Criteria group as a JSON array, e.g. '[\"id\", \"ge\", 5]'; "
                                 "repeat to OR several groups.")
        parser.add_argument("--limit", metavar="<count>", type=int, help="Maximum number of rows.")
        parser.add_argument("--offset", metavar="<offset>", type=int, default=0, help="Rows to skip, with --limit.")
        parser.add_argument("--order-by", metavar="<column>", action="append", default=[],
                            help="Sort column, optionally followed by ' desc'; may be repeated.")

    def _post_parser_init(self, args):
        """Shared initialization for all sub-commands.
        """
        self.args = args
        if args.subcmd == 'validate':
            return
        self.model = Model()
        self.schema = self.model.define_from_file(args.declaration)
        if args.needs_storage:
            storage_config = {} if args.dsn else read_config(create_default=True).get("storage", {})
            dsn = args.dsn or storage_config.get("dsn")
            if not dsn:
                raise UsageException("No database given; use --dsn.")
            self.storage = connect(dsn, get_credential(dsn, args.credential_file),
                                   echo=stob(storage_config.get("echo", False)))

    def _handle(self, args):
        return from_storage(self.storage, self.model)[self.schema.name][args.table]

    def validate(self, args):
        """Implements the validate sub-command.
        """
        doc = load_declaration(args.declaration)
        errors = validate_declaration(doc)
        for e in errors:
            eprint("%s: %s" % ("/".join(str(p) for p in e.absolute_path) or "<root>", e.message))
        if errors:
            return 1
        Model().define(doc)
        print("%s: valid" % args.declaration)
        return 0

    def sql(self, args):
        """Implements the sql sub-command.
        """
        sql, params = self._handle(args).select_sql(
            *args.group, limit=args.limit, offset=args.offset, order_by=args.order_by)
        print(sql)
        print(json.dumps(params, default=str))

    def search(self, args):
        """Implements the search sub-command.
        """
        rows = self._handle(args).search(*args.group, limit=args.limit, offset=args.offset, order_by=args.order_by)
        print(json.dumps([row.as_dict() for row in rows], indent=2, default=str))

    def size(self, args):
        """Implements the size sub-command.
        """
        print(self._handle(args).size(*args.group))

    def main(self, argv=None):
        """Main routine of the CLI.
        """
        args = self.parse_cli(argv)

        try:
            if not hasattr(args, 'func'):
                self.parser.print_usage()
                return 1

            self._post_parser_init(args)
            return args.func(args) or 0
        except UsageException as e:
            eprint("{prog} {subcmd}: {msg}".format(prog=self.parser.prog, subcmd=args.subcmd, msg=e))
        except StorageError as e:
            logging.debug(format_exception(e))
            eprint("{prog} {subcmd}: database error: {msg}".format(prog=self.parser.prog, subcmd=args.subcmd, msg=e))
        except OrmException as e:
            logging.debug(format_exception(e))
            eprint("{prog} {subcmd}: {msg}".format(prog=self.parser.prog, subcmd=args.subcmd, msg=e))
        except (IOError, OSError) as e:
            logging.debug(format_exception(e))
            eprint("{prog} {subcmd}: {msg}".format(prog=self.parser.prog, subcmd=args.subcmd, msg=e))
        finally:
            if self.storage is not None:
                self.storage.close()
        return 1


def main(argv=None):
    DESC = "Declarative ORM Command-Line Interface"
    INFO = "Runs searches against tables and joins declared in a JSON schema declaration."
    return OrmCLI(DESC, INFO).main(argv)


if __name__ == '__main__':
    sys.exit(main())
