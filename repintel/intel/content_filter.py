"""
Reputation Intel — Content-safety pre-filter.

Consulted before any excerpt is stored as evidence. Patterns tolerate the
usual digit/symbol substitutions.
"""
import re
from typing import Iterable, Optional, Pattern

PROHIBITED_REASON = "Content contains a slur or hate speech"

PROHIBITED_PATTERNS = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"n[i1!]gg[e3]r",
    r"f[a@4]gg?[o0]t",
    r"k[i1!]ke",
    r"sp[i1!]c[ks]?\b",
    r"ch[i1!]nk",
    r"w[e3]tb[a@]ck",
    r"tr[a@4]nn[yi1!e3]",
    r"d[yi1!]ke\b",
    r"c[o0][o0]n\b",
    r"g[o0][o0]k\b",
    r"r[e3]t[a@]rd",
    r"sch[i1!]z[o0]j[e3]w",
))


def contains_prohibited_content(
    text: Optional[str],
    patterns: Iterable[Pattern[str]] = PROHIBITED_PATTERNS,
) -> Optional[str]:
    """Return a rejection reason, or None if the text is clean."""
    if not text:
        return None
    for pattern in patterns:
        if pattern.search(text):
            return PROHIBITED_REASON
    return None

