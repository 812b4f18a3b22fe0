"""BACPAC Image Generator - build runnable database images from BACPAC exports.

This package validates BACPAC artifacts, assembles a Docker build context,
synthesizes a two-stage Dockerfile plus a runtime entrypoint, drives the
container build engine, and publishes the result with retry semantics.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
