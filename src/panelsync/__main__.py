"""Allow ``python -m panelsync``."""

from panelsync.cli import app

if __name__ == "__main__":
    app()
