"""
Criterion name normalization.

"Zone Géographique", "zone geographique" and "la Zone Géographique" all map to
"zone geographique". Only names are normalized, never values.
"""
import re
import unicodedata

ARTICLES = frozenset(["de", "du", "des", "le", "la", "les", "un", "une"])

_WHITESPACE = re.compile(r"\s+")


def _strip_marks(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def normalize(name) -> str:
    if name is None:
        return ""
    # lower() can reintroduce combining marks ("İ"), hence the second pass
    text = _strip_marks(_strip_marks(str(name)).lower())
    tokens = _WHITESPACE.sub(" ", text).strip().split(" ")

    while len(tokens) > 1 and tokens[0] in ARTICLES:
        tokens = tokens[1:]
    return " ".join(tokens)
