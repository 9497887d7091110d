import argparse
import logging

from . import init_logging, __version__


class BaseCLI(object):

    def __init__(self, description, epilog, version=__version__, declaration_required=False):

        self.version = version

        self.parser = argparse.ArgumentParser(description=description, epilog=epilog)

        self.parser.add_argument(
            '--version', action='version', version=self.version, help="Print version and exit.")

        self.parser.add_argument(
            '--quiet', action="store_true", help="Suppress logging output.")

        self.parser.add_argument(
            '--debug', action="store_true", help="Enable debug logging output.")

        self.parser.add_argument(
            '--credential-file', metavar='<file>', help="Optional path to a credential file.")

        self.parser.add_argument(
            '--dsn', metavar='<dsn>', help="SQLAlchemy database URL, e.g. 'sqlite:///app.db'.")

        self.parser.add_argument(
            'declaration' if declaration_required else '--declaration',
            metavar='<declaration file>', help="Path to a JSON schema declaration file.")

    def parse_cli(self, argv=None):
        args = self.parser.parse_args(argv)
        init_logging(level=logging.CRITICAL if args.quiet else (logging.DEBUG if args.debug else logging.INFO))

        return args
