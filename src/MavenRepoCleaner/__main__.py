"""Allow ``python -m MavenRepoCleaner``."""

from .cli import app

if __name__ == "__main__":
    app()
