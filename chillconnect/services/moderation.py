"""Chat screening for attempts to move contact or payment off the platform."""
import re

FLAGGED_KEYWORDS = (
    "phone", "number", "call", "whatsapp", "telegram", "email", "gmail", "yahoo",
    "instagram", "facebook", "snapchat", "twitter", "tiktok", "contact", "outside",
    "meet", "offline", "cash", "payment", "venmo", "paypal", "bank", "transfer",
    "address", "location", "home", "hotel", "room", "apartment", "house",
)

URGENT_WORDS = ("urgent", "hurry", "quick", "fast", "now", "asap")

SUSPICIOUS_PATTERNS = (
    ("phone number", re.compile(r"\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b")),
    ("email address", re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")),
    ("link", re.compile(r"\b(?:https?://)?(?:www\.)?[A-Za-z0-9-]+\.(?:com|net|org|in|io|me|co|app|link)\b", re.I)),
    ("social handle", re.compile(r"(?<![\w.])@[A-Za-z0-9_.]{3,}")),
)

FLAG_THRESHOLD = 50

_WORD_RE = re.compile(r"[a-z]+")


def _words(text: str) -> set[str]:
    return set(_WORD_RE.findall(text.lower()))


def flag_reasons(text: str) -> list[str]:
    """Why a message looks like an off-platform contact attempt (empty when clean)."""
    reasons = [label for label, pattern in SUSPICIOUS_PATTERNS if pattern.search(text)]
    hits = sorted(_words(text).intersection(FLAGGED_KEYWORDS))
    if hits:
        reasons.append("keywords: " + ", ".join(hits))
    return reasons


def risk_score(text: str, sender_flagged_count: int = 0) -> int:
    """0..100. Flagged content +50, pressure language +20, sender history up to +30, very short +10."""
    score = 0
    if flag_reasons(text):
        score += 50
    if _words(text).intersection(URGENT_WORDS):
        score += 20
    if sender_flagged_count > 0:
        score += min(sender_flagged_count * 10, 30)
    if len(text.strip()) < 10:
        score += 10
    return min(score, 100)


def screen(text: str, sender_flagged_count: int = 0) -> tuple[bool, int, str | None]:
    """Returns (is_flagged, score, reason)."""
    score = risk_score(text, sender_flagged_count)
    reasons = flag_reasons(text)
    flagged = score >= FLAG_THRESHOLD
    reason = "; ".join(reasons)[:255] if flagged and reasons else ("high risk score" if flagged else None)
    return flagged, score, reason
