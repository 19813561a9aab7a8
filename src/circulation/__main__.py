"""Main entry point for ``python -m circulation``."""

from circulation.cli import app


if __name__ == "__main__":
    app()
