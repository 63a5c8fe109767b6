"""OLX bulk feed generator.

Feed rules:
- Title: 5..70 chars
- Description: 20..9000 chars
- Price and area: required, must be positive
- Images: at least one
- Location: latitude and longitude required
"""

from typing import Optional

from rental_sync.feeds.xml_utils import (
    XML_DECLARATION,
    cdata,
    clamp_length,
    escape_xml,
    format_number,
)
from rental_sync.models.domain import Apartment, Platform, absolute_url

TITLE_MIN_LENGTH = 5
TITLE_MAX_LENGTH = 70
DESCRIPTION_MIN_LENGTH = 20
DESCRIPTION_MAX_LENGTH = 9000

# No geocoding: every advert is pinned to central Warsaw
FEED_LATITUDE = 52.2297
FEED_LONGITUDE = 21.0122

OLX_MARKET = "urn:site:olx.pl"
CATEGORY_URN = "urn:concept:apartments-for-rent"


def is_publishable(apartment: Apartment) -> bool:
    """OLX rejects adverts without title, price or area."""
    return bool(apartment.title) and apartment.price > 0 and apartment.area > 0


def placeholder_image(base_url: Optional[str], default_url: str) -> str:
    if base_url:
        return absolute_url("placeholder.jpg", base_url)
    return default_url


def build_advert(apartment: Apartment, base_url: Optional[str], placeholder_url: str) -> str:
    """Render one <advert> element."""
    ref = apartment.external_ref(Platform.OLX)
    advert_id = ref.value if ref is not None else apartment.id

    title = clamp_length(apartment.title, TITLE_MIN_LENGTH, TITLE_MAX_LENGTH)
    description = clamp_length(
        apartment.description or apartment.title,
        DESCRIPTION_MIN_LENGTH,
        DESCRIPTION_MAX_LENGTH,
    )

    images = apartment.photo_urls(base_url) or [placeholder_image(base_url, placeholder_url)]
    images_xml = "".join(
        f'        <image url="{escape_xml(url)}" />\n' for url in images
    )

    return (
        "    <advert>\n"
        f"      <id>{escape_xml(advert_id)}</id>\n"
        "      <basic>\n"
        f"        <title>{escape_xml(title)}</title>\n"
        f"        <description>{cdata(description)}</description>\n"
        f"        <category>{CATEGORY_URN}</category>\n"
        "        <price>\n"
        f"          <value>{format_number(apartment.price)}</value>\n"
        "          <currency>PLN</currency>\n"
        "        </price>\n"
        "        <location>\n"
        f"          <latitude>{FEED_LATITUDE}</latitude>\n"
        f"          <longitude>{FEED_LONGITUDE}</longitude>\n"
        "        </location>\n"
        "        <images>\n"
        f"{images_xml}"
        "        </images>\n"
        "      </basic>\n"
        "      <attributes>\n"
        "        <attribute>\n"
        "          <name>urn:concept:net-area-m2</name>\n"
        f"          <value>{format_number(apartment.area)}</value>\n"
        "        </attribute>\n"
        "        <attribute>\n"
        "          <name>urn:concept:market</name>\n"
        "          <value>urn:concept:secondary</value>\n"
        "        </attribute>\n"
        "      </attributes>\n"
        "    </advert>\n"
    )


def render_olx_feed(
    apartments: list[Apartment],
    base_url: Optional[str] = None,
    user_email: Optional[str] = None,
    placeholder_url: str = "https://via.placeholder.com/800x600",
) -> str:
    """Render the OLX feed document for already-selected AVAILABLE apartments.

    Apartments failing is_publishable are left out silently.
    """
    header = ""
    if user_email:
        header = f"  <user>\n    <email>{escape_xml(user_email)}</email>\n  </user>\n"

    adverts = "".join(
        build_advert(apartment, base_url, placeholder_url)
        for apartment in apartments
        if is_publishable(apartment)
    )

    return (
        f"{XML_DECLARATION}\n"
        "<feed>\n"
        f"{header}"
        f"  <market>{OLX_MARKET}</market>\n"
        "  <adverts>\n"
        f"{adverts}"
        "  </adverts>\n"
        "</feed>\n"
    )
