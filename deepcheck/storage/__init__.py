"""deepcheck.storage – blob storage backends and the media uploader."""
from .blob import (
    AVATAR_BUCKET,
    MEDIA_BUCKET,
    BlobStorage,
    BucketPolicy,
    InMemoryBlobStorage,
    LocalBlobStorage,
    SupabaseBlobStorage,
)
from .uploader import MediaUploader

__all__ = [
    "AVATAR_BUCKET",
    "MEDIA_BUCKET",
    "BlobStorage",
    "BucketPolicy",
    "InMemoryBlobStorage",
    "LocalBlobStorage",
    "MediaUploader",
    "SupabaseBlobStorage",
]
