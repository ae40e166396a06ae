"""Entry operations shared by the CLI."""
