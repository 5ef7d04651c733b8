"""
Reputation Intel — Keyword behavior analyzer.

Fallback for when the social source returns raw posts but no behavior
metrics of its own. Rates are keyword hits per post, scaled to 0-100.
"""
import math
import re
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from repintel.intel.models import BacklashEvent, BehaviorMetrics, Severity


# =============================================
# KEYWORD SEEDS
# =============================================

BACKLASH_KEYWORDS = (
    "scam", "scammer", "rug", "rugged", "rugpull", "fraud", "fraudster",
    "exposed", "exposing", "warning", "don't trust", "dont trust",
    "liar", "lying", "stole", "stealing", "drained", "exit scam",
    "ponzi", "pyramid", "fake", "con artist", "grifter", "scumbag",
    "beware", "stay away", "avoid", "criminal", "theft", "stolen",
)

HYPE_KEYWORDS = (
    "100x", "1000x", "10x", "50x", "guaranteed", "guarantee",
    "send it", "ape", "aping", "easy money", "don't fade", "dont fade",
    "generational", "moon", "mooning", "to the moon", "lambo",
    "financial freedom", "life changing", "retire", "millionaire",
    "massive gains", "huge gains", "free money", "no brainer",
    "cant lose", "can't lose", "risk free", "safe bet", "sure thing",
    "alpha", "insider", "early", "dont miss", "don't miss",
    "last chance", "before it moons", "undervalued", "gem",
)

VULGARITY_KEYWORDS = (
    "fuck", "fucking", "shit", "shitty", "bullshit", "ass", "asshole",
    "bitch", "damn", "crap", "dick", "dumbass", "idiot", "moron",
    "stupid", "trash", "garbage", "worthless", "loser",
)

AGGRESSION_KEYWORDS = (
    "kill yourself", "kys", "death threat", "gonna get you",
    "destroy you", "ruin you", "end you", "watch your back",
    "youre done", "you're done", "over for you",
    "ngmi", "stay poor", "have fun staying poor", "hfsp",
    "cope", "seethe", "cry more",
)

PROMOTIONAL_KEYWORDS = (
    "buy now", "get in", "presale", "whitelist", "airdrop", "giveaway",
    "follow and rt", "follow + rt", "like and rt", "check out",
    "launching", "just launched", "live now", "link in bio",
    "dyor", "nfa", "not financial advice",
)

CRITICAL_BACKLASH = frozenset({"scam", "rug", "fraud", "stole", "exit scam"})

BULLISH_WORDS = ("bullish", "moon", "buy", "long", "pump", "gem", "alpha")
BEARISH_WORDS = ("bearish", "dump", "sell", "short", "rug", "scam", "avoid")

BURST_MIN_POSTS = 5          # promo posts within one clock hour
MIN_POSTS_FOR_CONSISTENCY = 10
MAX_EXAMPLES = 5

_TOPIC_RE = re.compile(r"\$[A-Z]{2,10}")
_MENTION_RE = re.compile(r"@\w{1,15}")


@dataclass
class Post:
    id: str
    text: str
    timestamp: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Post":
        return cls(
            id=str(data.get("id") or ""),
            text=str(data.get("text") or ""),
            timestamp=parse_timestamp(data.get("timestamp")),
        )

    @property
    def evidence_id(self) -> str:
        return post_evidence_id(self.id)


def post_evidence_id(post_id: str) -> str:
    return f"post:{post_id}"


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


# =============================================
# KEYWORD MATCHING
# =============================================

def _matches(posts: Sequence[Post], keywords: Sequence[str]) -> Dict[str, List[Post]]:
    """keyword -> posts containing it, most frequent keyword first."""
    found: Dict[str, List[Post]] = defaultdict(list)
    for post in posts:
        lowered = post.text.lower()
        for keyword in keywords:
            if keyword in lowered:
                found[keyword].append(post)
    return dict(sorted(found.items(), key=lambda kv: -len(kv[1])))


def _hits(matches: Dict[str, List[Post]]) -> int:
    return sum(len(p) for p in matches.values())


def _examples(*groups: Dict[str, List[Post]]) -> List[str]:
    ids: List[str] = []
    for matches in groups:
        for posts in matches.values():
            for post in posts:
                if post.evidence_id not in ids:
                    ids.append(post.evidence_id)
    return ids[:MAX_EXAMPLES]


def _rate(hits: float, total: int, scale: float) -> float:
    return float(min(100, round(hits / max(total, 1) * scale)))


# =============================================
# ANALYSES
# =============================================

def _consistency(posts: Sequence[Post]) -> Dict[str, Any]:
    if len(posts) < MIN_POSTS_FOR_CONSISTENCY:
        return {"score": 80.0, "drift": 10.0, "contradictions": [], "evidence": []}

    ordered = _chronological(posts)
    size = math.ceil(len(ordered) / 3)
    windows = [ordered[i:i + size] for i in range(0, len(ordered), size)]
    topics = [{t for p in w for t in _TOPIC_RE.findall(p.text)} for w in windows]

    overlaps = []
    for prev, curr in zip(topics, topics[1:]):
        union = prev | curr
        overlaps.append(len(prev & curr) / len(union) if union else 1.0)
    avg_overlap = sum(overlaps) / len(overlaps) if overlaps else 1.0
    drift = float(round((1 - avg_overlap) * 100))

    contradictions, evidence = _contradictions(posts)
    return {
        "score": max(0.0, 100 - drift),
        "drift": drift,
        "contradictions": contradictions,
        "evidence": evidence,
    }


def _contradictions(posts: Sequence[Post]):
    bullish: Dict[str, List[Post]] = defaultdict(list)
    bearish: Dict[str, List[Post]] = defaultdict(list)
    for post in posts:
        lowered = post.text.lower()
        is_bull = any(w in lowered for w in BULLISH_WORDS)
        is_bear = any(w in lowered for w in BEARISH_WORDS)
        for ticker in set(_TOPIC_RE.findall(post.text)):
            if is_bull and not is_bear:
                bullish[ticker].append(post)
            elif is_bear and not is_bull:
                bearish[ticker].append(post)

    found, evidence = [], []
    for ticker in sorted(set(bullish) & set(bearish)):
        found.append(f"Both bullish and bearish on {ticker}")
        evidence.extend([bullish[ticker][0].evidence_id, bearish[ticker][0].evidence_id])
    return found[:6], evidence[:12]


def _chronological(posts: Sequence[Post]) -> List[Post]:
    if all(p.timestamp for p in posts):
        return sorted(posts, key=lambda p: p.timestamp)
    return list(posts)


def detect_shill_bursts(posts: Sequence[Post]) -> List[Dict[str, Any]]:
    """Clock hours with BURST_MIN_POSTS or more promotional posts, largest first."""
    promo_ids = {p.id for group in _matches(posts, PROMOTIONAL_KEYWORDS).values() for p in group}
    buckets: Dict[str, List[Post]] = defaultdict(list)
    for post in posts:
        if post.id in promo_ids and post.timestamp:
            buckets[post.timestamp.astimezone(timezone.utc).strftime("%Y-%m-%dT%H")].append(post)

    bursts = []
    for hour_posts in buckets.values():
        if len(hour_posts) >= BURST_MIN_POSTS:
            stamps = [p.timestamp for p in hour_posts]
            bursts.append({
                "start": min(stamps).isoformat(),
                "end": max(stamps).isoformat(),
                "count": len(hour_posts),
                "evidence_ids": [p.evidence_id for p in hour_posts[:MAX_EXAMPLES]],
            })
    bursts.sort(key=lambda b: -b["count"])
    return bursts[:5]


def analyze_behavior(raw_posts: Sequence[Dict[str, Any]]) -> BehaviorMetrics:
    posts = [Post.from_dict(p) for p in raw_posts if p]
    total = len(posts)
    if not total:
        return BehaviorMetrics()

    vulgar = _matches(posts, VULGARITY_KEYWORDS)
    aggro = _matches(posts, AGGRESSION_KEYWORDS)
    hype = _matches(posts, HYPE_KEYWORDS)
    consistency = _consistency(posts)
    bursts = detect_shill_bursts(posts)

    aggro_examples = _examples(aggro)
    targets: List[str] = []
    for post in (p for group in aggro.values() for p in group):
        for handle in _MENTION_RE.findall(post.text)[:2]:
            if handle.lower() not in targets:
                targets.append(handle.lower())

    return BehaviorMetrics(
        # aggression hits count more than vulgarity hits
        toxicity=_rate(_hits(vulgar) * 2 + _hits(aggro) * 5, total, 20),
        vulgarity=_rate(_hits(vulgar), total, 30),
        hype=_rate(_hits(hype), total, 25),
        hype_keywords=list(hype)[:10],
        aggression=_rate(_hits(aggro), total, 50),
        aggression_targets=targets[:5],
        consistency=consistency["score"],
        topic_drift=consistency["drift"],
        contradictions=consistency["contradictions"],
        burst_periods=len(bursts),
        evidence_ids={
            "toxicity": _examples(aggro, vulgar),
            "vulgarity": _examples(vulgar),
            "hype": _examples(hype),
            "aggression": aggro_examples,
            "consistency": consistency["evidence"],
            "spam_burst": [eid for b in bursts for eid in b["evidence_ids"]][:MAX_EXAMPLES],
        },
    )


def detect_backlash(raw_posts: Sequence[Dict[str, Any]]) -> List[BacklashEvent]:
    """
    One aggregate backlash event over the whole sample, or nothing.
    Severity climbs with hit volume; any critical keyword means at least high.
    """
    posts = [Post.from_dict(p) for p in raw_posts if p]
    matches = _matches(posts, BACKLASH_KEYWORDS)
    if not matches:
        return []

    total = _hits(matches)
    has_critical = any(k in CRITICAL_BACKLASH for k in matches)
    if total > 20 or has_critical:
        severity = Severity.CRITICAL if total > 50 else Severity.HIGH
    elif total > 5:
        severity = Severity.MEDIUM
    else:
        severity = Severity.LOW

    flagged = [p for p in posts if any(k in p.text.lower() for k in BACKLASH_KEYWORDS)]
    stamps = sorted(p.timestamp for p in flagged if p.timestamp)
    accusers = []
    for post in flagged:
        for handle in _MENTION_RE.findall(post.text):
            if handle.lower() not in accusers:
                accusers.append(handle.lower())

    return [BacklashEvent(
        id="backlash:keywords",
        category="scam_allegation" if has_critical else "criticism",
        severity=severity,
        start_date=stamps[0].isoformat() if stamps else None,
        end_date=stamps[-1].isoformat() if stamps else None,
        sources=accusers,
        summary="Recurring accusations: " + ", ".join(list(matches)[:5]),
        evidence_ids=[p.evidence_id for p in flagged[:10]],
    )]
