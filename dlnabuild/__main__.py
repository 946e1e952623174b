"""
Entry point for running the build as a module.

Usage: python -m dlnabuild [-v | -q] [--config FILE] [--checkout DIR]
"""

from dlnabuild.cli.main import main

if __name__ == "__main__":
    main()
