"""Main entry point for `python -m glowmarkt`."""

from glowmarkt.cli import app

if __name__ == "__main__":
    app(prog_name="glowmarkt")
