"""release-matrix - multi-architecture release build and publish orchestrator.

This package gates a release on the project context, cross-compiles every
image variant for each target architecture, stages the binaries into the
layout expected by the image descriptors, and publishes one multi-platform
image per variant.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
