"""Build orchestration module.

This module handles:
- Build plan construction and secret policy
- Build context assembly and teardown
- Dockerfile and entrypoint synthesis
- Running the build engine and verifying the image
- Manifest generation
"""

from bacpac_imagegen.types import BuildContext, BuildPlan

__all__ = ["BuildContext", "BuildPlan"]

# Lazy imports for submodules to avoid circular imports
# Access via bacpac_imagegen.builds.service, etc.
