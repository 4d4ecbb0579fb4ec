"""Build stages.

This module handles:
- Cache key computation and the shared compiler cache
- Cross-compiling each variant for every target architecture
- Staging binaries into the layout the image descriptors expect
"""

from release_matrix.types import BuildArtifact

__all__ = ["BuildArtifact"]

# Access submodules directly: release_matrix.builds.compile, etc.
