"""
Upstream domain family matching.

Google serves the same site from a long list of country domains. Matching an
enumerated list (rather than "any two letters") keeps unrelated hosts such as
``google.example.org`` out of the rewrite.
"""

import re
from functools import lru_cache
from typing import Pattern

GOOGLE_DOMAIN_SUFFIXES = (
    "com", "ad", "ae", "al", "am", "as", "at", "az", "ba", "be", "bf", "bg", "bi",
    "bj", "bs", "bt", "by", "ca", "cat", "cd", "cf", "cg", "ch", "ci", "cl", "cm",
    "cn", "cv", "cz", "de", "dj", "dk", "dm", "dz", "ee", "es", "fi", "fm", "fr",
    "ga", "ge", "gg", "gl", "gm", "gr", "gy", "hn", "hr", "ht", "hu", "ie", "im",
    "iq", "is", "it", "je", "jo", "kg", "ki", "kz", "la", "li", "lk", "lt", "lu",
    "lv", "md", "me", "mg", "mk", "ml", "mn", "ms", "mu", "mv", "mw", "ne", "nl",
    "no", "nr", "nu", "pl", "pn", "ps", "pt", "ro", "rs", "ru", "rw", "sc", "se",
    "sh", "si", "sk", "sm", "sn", "so", "sr", "st", "td", "tg", "tl", "tm", "tn",
    "to", "tt", "vg", "vu", "ws",
    "co.ao", "co.bw", "co.ck", "co.cr", "co.id", "co.il", "co.in", "co.jp",
    "co.ke", "co.kr", "co.ls", "co.ma", "co.mz", "co.nz", "co.th", "co.tz",
    "co.ug", "co.uk", "co.uz", "co.ve", "co.vi", "co.za", "co.zm", "co.zw",
    "com.af", "com.ag", "com.ar", "com.au", "com.bd", "com.bh", "com.bn",
    "com.bo", "com.br", "com.bz", "com.co", "com.cu", "com.cy", "com.do",
    "com.ec", "com.eg", "com.et", "com.fj", "com.gh", "com.gi", "com.gt",
    "com.hk", "com.jm", "com.kh", "com.kw", "com.lb", "com.ly", "com.mm",
    "com.mt", "com.mx", "com.my", "com.na", "com.ng", "com.ni", "com.np",
    "com.om", "com.pa", "com.pe", "com.pg", "com.ph", "com.pk", "com.pr",
    "com.py", "com.qa", "com.sa", "com.sb", "com.sg", "com.sl", "com.sv",
    "com.tj", "com.tr", "com.tw", "com.ua", "com.uy", "com.vc", "com.vn",
)

# Longest first so "co.uk" wins over a bare "co"-style prefix match.
_SUFFIX_ALTERNATION = "|".join(
    re.escape(suffix)
    for suffix in sorted(GOOGLE_DOMAIN_SUFFIXES, key=len, reverse=True)
)


def _host_expression(brand: str) -> str:
    return (
        r"(?<![a-z0-9-])(?P<subdomain>(?:[a-z0-9-]+\.)*)"
        + re.escape(brand)
        + r"\.(?:" + _SUFFIX_ALTERNATION + r")"
        + r"(?![a-z0-9-]|\.[a-z0-9-])"
    )


@lru_cache(maxsize=8)
def url_pattern(brand: str) -> Pattern:
    """Absolute or protocol-relative URL origins on the brand's domain family.

    Also matches the ``https:\\/\\/`` form found inside inline JSON and scripts.
    """
    return re.compile(
        r"(?:https?:)?(?://|\\/\\/)" + _host_expression(brand) + r"(?::\d{1,5})?",
        re.IGNORECASE,
    )


@lru_cache(maxsize=8)
def host_pattern(brand: str) -> Pattern:
    """Bare host references such as ``www.google.de`` or ``.google.co.uk``."""
    return re.compile(_host_expression(brand), re.IGNORECASE)


@lru_cache(maxsize=8)
def brand_pattern(token: str) -> Pattern:
    return re.compile(re.escape(token), re.IGNORECASE)


def public_host_for(subdomain: str, public_host: str, default_subdomain: str = "") -> str:
    """
    Public host standing in for ``<subdomain>.<brand domain>``.

    The upstream's default subdomain (``www``) and no subdomain at all both map
    to the bare public host; any other subdomain is kept in front of it.
    """
    subdomain = subdomain.lower().rstrip(".")
    if not subdomain or subdomain == default_subdomain:
        return public_host
    return f"{subdomain}.{public_host}"


def replace_domain_references(
    text: str,
    brand: str,
    public_scheme: str,
    public_host: str,
    default_subdomain: str = "",
) -> str:
    """
    Point every reference to the brand's domain family at the public host.

    URL origins become ``<public_scheme>://<host>``, bare host mentions become
    ``<host>``, where ``<host>`` is the public host with the referenced
    subdomain kept. Text that no longer mentions the family is returned
    unchanged, so the rewrite is idempotent.
    """
    text = url_pattern(brand).sub(
        lambda m: f"{public_scheme}://"
        + public_host_for(m.group("subdomain"), public_host, default_subdomain),
        text,
    )
    return host_pattern(brand).sub(
        lambda m: public_host_for(m.group("subdomain"), public_host, default_subdomain),
        text,
    )
