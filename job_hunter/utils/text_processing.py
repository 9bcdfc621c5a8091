"""Description cleanup and name normalization helpers."""

import html
import re

# Trailing boilerplate sections. The earliest match across all patterns marks the cut.
# Visa / sponsorship wording is not listed: it is a scoring signal.
BOILERPLATE_PATTERNS = [
    # Equal opportunity declaration
    re.compile(r"\bequal[\s-]opportunity[\s-](employer|employment)\b", re.IGNORECASE),
    # Discrimination attribute list
    re.compile(
        r"\bwithout regard to\b.{0,60}(race|color|sex|age|national origin|disability|veteran)",
        re.IGNORECASE,
    ),
    # Reasonable accommodation disclosure
    re.compile(r"\bif you (need|require|request)\b.{0,50}\breasonable accommodation\b", re.IGNORECASE),
    # Diversity statement
    re.compile(r"\bwe (celebrate|embrace|champion|welcome)\b.{0,40}\bdiversity\b", re.IGNORECASE),
    # Benefits header on its own line
    re.compile(
        r"(?:^|\n)(benefits?|perks?( & benefits?)?|what we offer|total rewards?)\s*[:\n]",
        re.IGNORECASE | re.MULTILINE,
    ),
    # "About us" header, but not "About the role"
    re.compile(r"(?:^|\n)about (us|the company)\s*[:\n]", re.IGNORECASE | re.MULTILINE),
]


def strip_html(text: str) -> str:
    """Drop tags and decode entities, keeping paragraph and list breaks."""
    text = re.sub(r"<br\s*/?>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"</(p|li)>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    text = html.unescape(text).replace("\xa0", " ")
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def trim_boilerplate(text: str) -> str:
    """Cut the description at the earliest boilerplate match.

    Everything before the cut is returned verbatim (minus trailing whitespace);
    text without any match is returned unchanged.
    """
    cut_at = len(text)
    for pattern in BOILERPLATE_PATTERNS:
        match = pattern.search(text)
        if match and match.start() < cut_at:
            cut_at = match.start()
    if cut_at == len(text):
        return text
    return text[:cut_at].rstrip()


def clean_description(text: str, limit: int) -> str:
    """Prompt-ready description: HTML stripped, boilerplate trimmed, length capped."""
    return trim_boilerplate(strip_html(text))[:limit]


def normalize_company(name: str) -> str:
    return name.strip().lower()


def tokenize(text: str) -> set[str]:
    """Lower-cased word tokens, split on anything that is not a word character."""
    return {token for token in re.split(r"\W+", text.lower()) if token}
