"""Burrow CLI entry point."""

from burrow.cli import app

if __name__ == "__main__":
    app()
