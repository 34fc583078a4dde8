from .banner import (
    DATE_TOKEN,
    VERSION_TOKEN,
    VersionedBannerProvider,
    read_version,
    render,
    utc_today,
    version_marker,
)
from .types import Artifact, ArtifactWriteError, ManifestReadError
from .writer import ArtifactWriter

__all__ = [
    "DATE_TOKEN",
    "VERSION_TOKEN",
    "VersionedBannerProvider",
    "read_version",
    "render",
    "utc_today",
    "version_marker",
    "Artifact",
    "ArtifactWriteError",
    "ArtifactWriter",
    "ManifestReadError",
]
