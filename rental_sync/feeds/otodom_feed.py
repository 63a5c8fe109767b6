"""Otodom bulk feed generator.

Unlike the OLX feed, listings are neither filtered nor length-clamped.
"""

from typing import Optional

from rental_sync.feeds.xml_utils import XML_DECLARATION, cdata, escape_xml, format_number
from rental_sync.models.domain import Apartment, Platform, absolute_url

OTODOM_FEED_NAMESPACE = "http://www.otodom.pl/feed"
CATEGORY_URN = "urn:concept:apartments-for-rent"


def build_listing(apartment: Apartment, base_url: Optional[str]) -> str:
    """Render one <listing> element."""
    ref = apartment.external_ref(Platform.OTODOM)
    listing_id = ref.value if ref is not None else apartment.id

    images = apartment.photo_urls(base_url)
    if not images and base_url:
        images = [absolute_url("placeholder.jpg", base_url)]
    images_xml = "".join(f'      <image url="{escape_xml(url)}" />\n' for url in images)

    area = format_number(apartment.area)
    return (
        f'    <listing id="{escape_xml(listing_id)}">\n'
        f"      <title>{escape_xml(apartment.title)}</title>\n"
        f"      <description>{cdata(apartment.description or apartment.title)}</description>\n"
        f"      <address>{escape_xml(apartment.address)}</address>\n"
        f"      <price>{format_number(apartment.price)}</price>\n"
        f'      <area unit="m2">{area}</area>\n'
        f"      <category>{CATEGORY_URN}</category>\n"
        "      <market>urn:concept:secondary</market>\n"
        "      <attributes>\n"
        f'        <attribute name="urn:concept:net-area-m2">{area}</attribute>\n'
        "      </attributes>\n"
        "      <images>\n"
        f"{images_xml}"
        "      </images>\n"
        "    </listing>\n"
    )


def render_otodom_feed(apartments: list[Apartment], base_url: Optional[str] = None) -> str:
    """Render the Otodom feed document for already-selected AVAILABLE apartments."""
    listings = "".join(build_listing(apartment, base_url) for apartment in apartments)
    return (
        f"{XML_DECLARATION}\n"
        f'<feed xmlns="{OTODOM_FEED_NAMESPACE}">\n'
        "  <listings>\n"
        f"{listings}"
        "  </listings>\n"
        "</feed>\n"
    )
