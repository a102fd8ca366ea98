"""로컬 미디어 획득 모듈."""

from .acquisition import MediaAcquisitionUnit, MediaConstraints, MediaTrackSet
from .tracks import SwitchableTrack

__all__ = [
    "MediaAcquisitionUnit",
    "MediaConstraints",
    "MediaTrackSet",
    "SwitchableTrack",
]
