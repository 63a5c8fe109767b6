# Bulk XML feed generation module

import logging
from typing import Optional

from rental_sync.feeds.olx_feed import render_olx_feed
from rental_sync.feeds.otodom_feed import render_otodom_feed
from rental_sync.models.domain import ApartmentStatus, Platform
from rental_sync.storage.base import StorageInterface

logger = logging.getLogger(__name__)


class FeedGenerator:
    """Renders bulk feeds from the AVAILABLE apartments in storage."""

    def __init__(self, storage: StorageInterface, placeholder_url: str):
        self._storage = storage
        self._placeholder_url = placeholder_url

    async def generate_feed(
        self,
        platform: Platform,
        base_url: Optional[str] = None,
        principal_hint: Optional[str] = None,
    ) -> str:
        """Render the feed document of a platform.

        Args:
            platform: Target platform
            base_url: Used to resolve relative photo URLs and placeholder images
            principal_hint: Contact email put in the OLX feed header

        Returns:
            Complete UTF-8 XML document
        """
        apartments = await self._storage.list_apartments(status=ApartmentStatus.AVAILABLE)
        logger.debug(f"Rendering {platform.value} feed for {len(apartments)} apartments")

        if platform == Platform.OLX:
            return render_olx_feed(
                apartments,
                base_url=base_url,
                user_email=principal_hint,
                placeholder_url=self._placeholder_url,
            )
        return render_otodom_feed(apartments, base_url=base_url)


__all__ = ["FeedGenerator", "render_olx_feed", "render_otodom_feed"]
