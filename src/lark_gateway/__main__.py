"""Entry point for running the gateway as a module."""

from lark_gateway.cli import app

if __name__ == "__main__":
    app()
