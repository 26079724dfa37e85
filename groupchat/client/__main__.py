"""
Entry point for the group chat client: ``python -m groupchat.client``.
"""
from .cli import app


def main():
    """Launch the command line client."""
    app(prog_name="groupchat")


if __name__ == "__main__":
    main()
