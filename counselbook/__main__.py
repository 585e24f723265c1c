"""
Entry point for ``python -m counselbook``.
"""

from .cli.app import app

if __name__ == "__main__":
    app()
