"""
Reputation Intel — Entity Extractor

Pulls typed tokens out of raw text (posts, bios, project descriptions):

    $TICKER       → ticker   (uppercased)
    @handle       → mention  (lowercased)
    0x… / base58  → wallet   (chain tagged via WALLET_SHAPES)
    https://…     → domain   (social/video/invite hosts excluded)
    t.me/…        → telegram
    discord.gg/…  → discord
    github.com/…  → github

Pure function over text. Same value seen again anywhere in the corpus merges
into one Mention with its count incremented.
"""
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from repintel.intel.models import Mention


# =============================================
# PATTERNS
# =============================================

TICKER_RE = re.compile(r"\$([A-Za-z][A-Za-z0-9]{0,9})(?![A-Za-z0-9])")
HANDLE_RE = re.compile(r"(?<![\w.@])@(\w{1,15})(?!\w)")
ADDRESS_CANDIDATE_RE = re.compile(r"(?<![0-9A-Za-z])(?:0x[0-9A-Fa-f]{40}|[1-9A-HJ-NP-Za-km-z]{32,44})(?![0-9A-Za-z])")
URL_HOST_RE = re.compile(r"https?://(?:www\.)?([a-zA-Z0-9-]+(?:\.[a-zA-Z0-9-]+)+)", re.IGNORECASE)
TELEGRAM_RE = re.compile(r"(?:t\.me|telegram\.me)/(\w+)", re.IGNORECASE)
DISCORD_RE = re.compile(r"discord\.(?:gg|com/invite)/(\w+)", re.IGNORECASE)
GITHUB_RE = re.compile(r"github\.com/([\w-]+(?:/[\w.-]+)?)", re.IGNORECASE)

# Hosts that are never the subject's own domain
DENIED_DOMAINS = frozenset({
    "twitter.com", "x.com", "t.co", "youtube.com", "youtu.be",
    "instagram.com", "facebook.com", "reddit.com", "tiktok.com",
    "google.com", "medium.com", "substack.com", "linkedin.com",
    "twitch.tv", "imgur.com", "giphy.com", "tenor.com",
    "t.me", "telegram.me", "discord.gg", "discord.com", "github.com",
})


# =============================================
# WALLET SHAPES
# =============================================

def _mixed_case_with_digit(value: str) -> bool:
    return (
        any(c.isupper() for c in value)
        and any(c.islower() for c in value)
        and any(c.isdigit() for c in value)
    )


@dataclass(frozen=True)
class WalletShape:
    chain: str
    pattern: "re.Pattern[str]"
    normalize: Callable[[str], str]
    accept: Callable[[str], bool] = lambda value: True

    def matches(self, value: str) -> bool:
        return bool(self.pattern.fullmatch(value)) and self.accept(value)


# First matching row wins. Adding a chain means adding a row.
WALLET_SHAPES: Sequence[WalletShape] = (
    WalletShape(
        chain="ethereum",
        pattern=re.compile(r"0x[0-9a-fA-F]{40}"),
        normalize=str.lower,
    ),
    WalletShape(
        chain="solana",
        pattern=re.compile(r"[1-9A-HJ-NP-Za-km-z]{32,44}"),
        normalize=lambda value: value,  # base58 is case-sensitive
        accept=_mixed_case_with_digit,
    ),
)


def classify_address(value: str) -> Optional[str]:
    """Return the chain an address-shaped string belongs to, or None."""
    shape = _match_shape(value.strip())
    return shape.chain if shape else None


def normalize_address(value: str) -> Optional[str]:
    shape = _match_shape(value.strip())
    return shape.normalize(value.strip()) if shape else None


def _match_shape(value: str) -> Optional[WalletShape]:
    for shape in WALLET_SHAPES:
        if shape.matches(value):
            return shape
    return None


# =============================================
# EXTRACTION
# =============================================

@dataclass
class ExtractionResult:
    tickers: List[Mention] = field(default_factory=list)
    mentions: List[Mention] = field(default_factory=list)
    wallets: List[Mention] = field(default_factory=list)
    domains: List[Mention] = field(default_factory=list)
    telegram_links: List[Mention] = field(default_factory=list)
    discord_links: List[Mention] = field(default_factory=list)
    github_links: List[Mention] = field(default_factory=list)

    def to_dict(self) -> Dict[str, List[Dict]]:
        return {
            name: [m.to_dict() for m in getattr(self, name)]
            for name in (
                "tickers", "mentions", "wallets", "domains",
                "telegram_links", "discord_links", "github_links",
            )
        }


class _Counter:
    """Accumulates mentions of one type keyed by normalized value."""

    def __init__(self, mention_type: str):
        self.type = mention_type
        self._seen: Dict[str, Mention] = {}

    def add(self, value: str, index: int, chain: Optional[str] = None):
        existing = self._seen.get(value)
        if existing:
            existing.count += 1
        else:
            self._seen[value] = Mention(
                type=self.type, value=value, count=1,
                first_seen_index=index, chain=chain,
            )

    def ranked(self) -> List[Mention]:
        return sorted(self._seen.values(), key=lambda m: (-m.count, m.value))


def _is_denied(host: str) -> bool:
    return any(host == d or host.endswith("." + d) for d in DENIED_DOMAINS)


def extract(texts: Iterable[Optional[str]]) -> ExtractionResult:
    """
    Extract and count every typed token in the corpus.

    Each text is scanned independently; `first_seen_index` is the index of
    the first text containing the value. Results are ordered by count,
    then value.
    """
    tickers = _Counter("ticker")
    mentions = _Counter("mention")
    wallets = _Counter("wallet")
    domains = _Counter("domain")
    telegram = _Counter("telegram")
    discord = _Counter("discord")
    github = _Counter("github")

    for index, text in enumerate(texts):
        if not text or not isinstance(text, str):
            continue

        for m in TICKER_RE.finditer(text):
            tickers.add(m.group(1).upper(), index)

        for m in HANDLE_RE.finditer(text):
            mentions.add(m.group(1).lower(), index)

        for m in ADDRESS_CANDIDATE_RE.finditer(text):
            shape = _match_shape(m.group(0))
            if shape:
                wallets.add(shape.normalize(m.group(0)), index, chain=shape.chain)

        for m in URL_HOST_RE.finditer(text):
            host = m.group(1).lower()
            if not _is_denied(host):
                domains.add(host, index)

        for m in TELEGRAM_RE.finditer(text):
            telegram.add(m.group(1).lower(), index)

        for m in DISCORD_RE.finditer(text):
            discord.add(m.group(1), index)  # invite codes are case-sensitive

        for m in GITHUB_RE.finditer(text):
            github.add(m.group(1).lower().rstrip("."), index)

    return ExtractionResult(
        tickers=tickers.ranked(),
        mentions=mentions.ranked(),
        wallets=wallets.ranked(),
        domains=domains.ranked(),
        telegram_links=telegram.ranked(),
        discord_links=discord.ranked(),
        github_links=github.ranked(),
    )


# =============================================
# LINKED ENTITIES
# =============================================

MAX_LINKED_HANDLES = 20


def _confidence_for_count(count: int) -> str:
    if count >= 5:
        return "high"
    if count >= 2:
        return "medium"
    return "low"


def to_linked_entities(result: ExtractionResult) -> Dict[str, List[Dict]]:
    """Group extracted links by type for the report's linked-entities panel."""
    groups = {
        "domain": result.domains,
        "telegram": result.telegram_links,
        "discord": result.discord_links,
        "github": result.github_links,
        "wallet": result.wallets,
        "handle": result.mentions[:MAX_LINKED_HANDLES],
    }
    linked: Dict[str, List[Dict]] = {}
    for kind, items in groups.items():
        entries = []
        for m in items:
            entry = {"value": m.value, "mentions": m.count, "confidence": _confidence_for_count(m.count)}
            if m.chain:
                entry["chain"] = m.chain
            entries.append(entry)
        if entries:
            linked[kind] = entries
    return linked
