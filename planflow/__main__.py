# planflow/__main__.py
"""
Entry point for the planflow CLI.
"""
from planflow.cli import app

if __name__ == "__main__":
    app()
