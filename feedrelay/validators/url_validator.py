"""Feed URL validation and alternative-URL mapping.

``is_fetchable_url`` is the cheap syntactic SSRF check (scheme, loopback names,
private IP literals). ``validate_url`` adds DNS resolution and rejects a host if
any of its addresses is private; direct fetches and every redirect hop go
through it. ``alternative_urls`` lists the URLs worth trying for a feed, the
original first.
"""

from __future__ import annotations

import asyncio
import ipaddress
import socket
from urllib.parse import urlparse


# Private/reserved IP networks
_PRIVATE_NETWORKS = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("fc00::/7"),
    ipaddress.ip_network("fe80::/10"),
]

_ALLOWED_SCHEMES = {"http", "https"}
_BLOCKED_HOSTNAMES = {"localhost", "localhost.localdomain"}

# Dead FeedBurner addresses and http-only feeds with known direct replacements
FEED_URL_MAPPINGS: dict[str, list[str]] = {
    "http://feeds.feedburner.com/tecnoblog": [
        "https://tecnoblog.net/feed/",
        "https://tecnoblog.net/rss/",
    ],
    "http://feeds.feedburner.com/Techcrunch": ["https://techcrunch.com/feed/"],
    "http://feeds.feedburner.com/blogdoiphone/rss": ["https://blogdoiphone.com/feed/"],
    "http://feeds2.feedburner.com/canaltechbr": [
        "https://canaltech.com.br/rss/",
        "https://canaltech.com.br/feed/",
    ],
    "http://feeds.feedburner.com/guiadopc": ["https://guiadopc.com.br/feed/"],
    "http://meiobit.com/index.xml": [
        "https://meiobit.com/feed/",
        "https://meiobit.com/index.xml",
    ],
    "http://feeds.feedburner.com/design-milk": ["https://design-milk.com/feed/"],
    "http://feeds.feedburner.com/core77/blog": ["https://www.core77.com/rss/object.xml"],
    "http://feeds.feedburner.com/dezeen": ["https://www.dezeen.com/feed/"],
    "http://feeds.feedburner.com/JustCreativeDesignBlog": ["https://justcreative.com/feed/"],
    "http://feeds2.feedburner.com/thenextweb": ["https://thenextweb.com/feed/"],
    "http://feeds.feedburner.com/brainstorm9": ["https://www.brainstorm9.com/feed/"],
}


def is_private_ip(ip_str: str) -> bool:
    """Check if an IP address is in a private/reserved range."""
    try:
        addr = ipaddress.ip_address(ip_str)
        if addr.version == 6 and addr.ipv4_mapped is not None:
            addr = addr.ipv4_mapped
        return any(addr in network for network in _PRIVATE_NETWORKS if addr.version == network.version)
    except ValueError:
        return True  # Invalid IP → reject


def is_valid_feed_url(url: str) -> bool:
    """Syntactic check: http/https scheme and a hostname."""
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    return parsed.scheme in _ALLOWED_SCHEMES and bool(parsed.hostname)


def is_fetchable_url(url: str) -> bool:
    """Valid feed URL whose host is not a loopback name or private IP literal."""
    if not is_valid_feed_url(url):
        return False
    host = (urlparse(url.strip()).hostname or "").lower()
    if host in _BLOCKED_HOSTNAMES:
        return False
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return True  # a DNS name, not an IP literal
    return not is_private_ip(host)


async def validate_url(url: str) -> bool:
    """Validate a direct-fetch target.

    Returns True if the URL passes ``is_fetchable_url`` and every address its
    host resolves to is public. Resolution failures are treated as unsafe.
    """
    if not is_fetchable_url(url):
        return False
    host = urlparse(url.strip()).hostname
    try:
        infos = await asyncio.to_thread(socket.getaddrinfo, host, None)
    except (socket.gaierror, UnicodeError, ValueError, OSError):
        return False
    if not infos:
        return False
    return not any(is_private_ip(str(info[4][0])) for info in infos)


def alternative_urls(url: str) -> list[str]:
    """The URL itself, mapped replacements, then the https variant of an http URL."""
    candidates = [url]
    candidates.extend(FEED_URL_MAPPINGS.get(url, []))
    if url.startswith("http://"):
        candidates.append("https://" + url[len("http://"):])

    seen: set[str] = set()
    unique = []
    for candidate in candidates:
        if candidate not in seen:
            seen.add(candidate)
            unique.append(candidate)
    return unique
