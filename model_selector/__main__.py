"""Allow ``python -m model_selector``."""

from model_selector.cli.commands import app

if __name__ == "__main__":
    app()
