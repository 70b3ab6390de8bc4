from __future__ import annotations

from functools import lru_cache

from reelmark.models.models import Platform
from reelmark.services.providers.base import VideoProvider
from reelmark.services.providers.bilibili import BilibiliProvider
from reelmark.services.providers.youtube import YouTubeProvider


@lru_cache()
def get_provider(platform: Platform) -> VideoProvider:
    """One provider per platform; each request opens its own HTTP session."""
    if platform == Platform.BILIBILI:
        return BilibiliProvider()
    return YouTubeProvider()
