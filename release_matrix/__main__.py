"""Allow running as ``python -m release_matrix``."""

from release_matrix.cli import app

app()
