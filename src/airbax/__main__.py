"""Airbax CLI entry point."""

from airbax.cli import app

if __name__ == "__main__":
    app()
