"""Publishing module.

Tags built images for a remote repository and pushes them with bounded
exponential-backoff retry.
"""

from bacpac_imagegen.publish.publisher import PublishResult, Publisher

__all__ = ["PublishResult", "Publisher"]
