"""Entry point for running Troupe as a module."""

from troupe.cli import app


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
