"""
dlnabuild command-line entry point.

There are no subcommands: a run provisions the toolchain and builds every
enabled stage. What gets built is controlled by the settings constants and
an optional dlnabuild.yaml, not by flags.
"""

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from dlnabuild import __version__
from dlnabuild.config.settings import CONFIG_FILENAME, load_settings
from dlnabuild.core.exceptions import DlnaBuildError
from dlnabuild.pipeline.runner import Pipeline

logger = logging.getLogger(__name__)


def _terminate(signum, frame):
    # Unwind through every finally block so scratch files are removed.
    raise SystemExit(128 + signum)


class CLI:
    """dlnabuild command-line interface."""

    def __init__(self):
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog="dlnabuild",
            description="Cross-build a statically linked MiniDLNA for ARMv7 Linux",
        )
        parser.add_argument(
            "--version", action="version", version=f"dlnabuild {__version__}"
        )
        parser.add_argument(
            "--verbose", "-v", action="store_true", help="Enable verbose output"
        )
        parser.add_argument(
            "--quiet",
            "-q",
            action="store_true",
            help="Enable minimal output (errors only)",
        )
        parser.add_argument(
            "--config",
            type=Path,
            metavar="PATH",
            help=f"Settings override file (default: ./{CONFIG_FILENAME} if present)",
        )
        parser.add_argument(
            "--checkout",
            type=Path,
            metavar="PATH",
            default=Path.cwd(),
            help="Directory holding patches/ and files/ (default: current directory)",
        )
        return parser

    def parse_args(self, args: Optional[List[str]] = None):
        return self.parser.parse_args(args)

    def run(self, args: Optional[List[str]] = None) -> int:
        """
        Run the build.

        Args:
            args: Arguments to parse (uses sys.argv if None)

        Returns:
            Exit code: 0 on success, 1 on failure, 130 when interrupted
        """
        parsed_args = self.parse_args(args)
        self._configure_logging(parsed_args)

        try:
            settings = load_settings(parsed_args.checkout, parsed_args.config)
            result = Pipeline.from_settings(settings).run()
        except KeyboardInterrupt:
            logger.info("Build cancelled by user")
            return 130
        except DlnaBuildError as e:
            logger.error(f"Error: {e}")
            if parsed_args.verbose:
                logger.debug("Traceback:", exc_info=True)
            return 1

        if result.fetched:
            logger.info(f"Fetched: {', '.join(result.fetched)}")
        return 0

    def _configure_logging(self, args):
        """
        Configure logging based on verbose/quiet flags.

        Args:
            args: Parsed arguments with verbose/quiet flags
        """
        if args.verbose:
            level = logging.DEBUG
            format_str = "%(levelname)s [%(name)s] %(message)s"
        elif args.quiet:
            level = logging.ERROR
            format_str = "%(levelname)s: %(message)s"
        else:
            level = logging.INFO
            format_str = "%(message)s"

        logging.basicConfig(
            level=level,
            format=format_str,
            force=True,  # Reconfigure if already configured
        )


def main():
    """Main entry point for CLI."""
    signal.signal(signal.SIGTERM, _terminate)
    cli = CLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()
