"""Minimal demonstration of the Aeon terminal chat."""

from aeon_core.api.service import run_cli

if __name__ == "__main__":
    run_cli()
