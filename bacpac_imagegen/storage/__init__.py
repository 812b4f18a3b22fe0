"""Object storage module.

Resolves blob URLs to local files through an ordered chain of
authentication strategies.
"""

from bacpac_imagegen.storage.fetch import (
    AzCliStorageBackend,
    BlobReference,
    fetch_blob,
    parse_blob_url,
)

__all__ = ["AzCliStorageBackend", "BlobReference", "fetch_blob", "parse_blob_url"]
