"""
Reputation Intel — Target resolution.

Accepts whatever the user typed and pins it to one canonical entity:

    "$PEPE" / "#pepe"                  → ticker   PEPE
    "0xAbC…" (40 hex) / base58 address → contract (chain tagged)
    "https://x.com/foo", "@Foo"        → handle   foo
    "https://www.Project.io/"          → domain   project.io
    "foo_bar"                          → handle   foo_bar
"""
import re
from urllib.parse import urlparse

from repintel.intel.errors import EntityUnresolvable
from repintel.intel.extractor import classify_address, normalize_address
from repintel.intel.models import EntityKind, ResolvedEntity

TICKER_RE = re.compile(r"[A-Za-z][A-Za-z0-9]{0,9}")
HANDLE_RE = re.compile(r"[A-Za-z0-9_]{1,15}")
X_PROFILE_RE = re.compile(r"(?:^|[/.])(?:x\.com|twitter\.com)/([A-Za-z0-9_]{1,15})(?:[/?#]|$)", re.IGNORECASE)
DOMAIN_RE = re.compile(r"[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?(\.[a-z]{2,})+")


def normalize_domain(value: str) -> str:
    clean = value.strip().lower()
    if "://" not in clean:
        clean = "http://" + clean
    host = urlparse(clean).netloc or ""
    host = host.split("@")[-1].split(":")[0]
    if host.startswith("www."):
        host = host[4:]
    return host.rstrip("/.")


def resolve_target(query: str) -> ResolvedEntity:
    """
    Parse a free-form target. Shapes are tried in a fixed order; the first
    that matches wins. Raises EntityUnresolvable when nothing does.
    """
    raw = query or ""
    trimmed = raw.strip()
    if not trimmed:
        raise EntityUnresolvable(raw)

    # ── Ticker ──────────────────────────────────────────
    if trimmed[0] in "$#":
        symbol = trimmed[1:]
        if TICKER_RE.fullmatch(symbol):
            return ResolvedEntity(EntityKind.TICKER, raw, symbol.upper())
        raise EntityUnresolvable(raw)

    # ── Contract address ────────────────────────────────
    chain = classify_address(trimmed)
    if chain:
        return ResolvedEntity(EntityKind.CONTRACT, raw, normalize_address(trimmed), chain=chain)

    # ── X / Twitter profile URL ─────────────────────────
    profile = X_PROFILE_RE.search(trimmed)
    if profile and " " not in trimmed:
        return ResolvedEntity(EntityKind.HANDLE, raw, profile.group(1).lower())

    # ── @handle ─────────────────────────────────────────
    if trimmed.startswith("@"):
        handle = trimmed[1:]
        if HANDLE_RE.fullmatch(handle):
            return ResolvedEntity(EntityKind.HANDLE, raw, handle.lower())
        raise EntityUnresolvable(raw)

    # ── Domain or URL ───────────────────────────────────
    if "." in trimmed and " " not in trimmed:
        host = normalize_domain(trimmed)
        if DOMAIN_RE.fullmatch(host):
            return ResolvedEntity(EntityKind.DOMAIN, raw, host)
        raise EntityUnresolvable(raw)

    # ── Bare handle ─────────────────────────────────────
    if HANDLE_RE.fullmatch(trimmed):
        return ResolvedEntity(EntityKind.HANDLE, raw, trimmed.lower())

    raise EntityUnresolvable(raw)
