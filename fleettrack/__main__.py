"""Module entry point: python -m fleettrack ..."""

from fleettrack.cli import app

if __name__ == "__main__":
    app()
