from __future__ import annotations

from typing import Mapping, Optional

from .constants import COMPRESSION_NONE, COMPRESSION_GZ, COMPRESSION_BZ2, DEFAULT_COMPRESSION


def decide(profile: Optional[Mapping[str, int]]) -> str:
    """
    Picks one compression kind for every entry of a rebuilt archive.

    Once files sit on disk, which entry used which scheme is lost, so the
    dominant scheme of the original is applied archive-wide:

    1.  any BZ2 entries -> BZ2
    2.  any GZ entries -> GZ
    3.  a profile exists but records neither (only None, or empty) -> None
    4.  no profile at all -> GZ
    """
    if profile is None:
        return DEFAULT_COMPRESSION
    if profile.get(COMPRESSION_BZ2, 0) > 0:
        return COMPRESSION_BZ2
    if profile.get(COMPRESSION_GZ, 0) > 0:
        return COMPRESSION_GZ
    return COMPRESSION_NONE
