import re

_NBSP = "\u00a0"
_THIN = "\u2009"
_NNBSP = "\u202f"

_RE_SOFT_HYPHEN = re.compile("\u00ad")

# end-of-line hyphenation join: "construc-\ntions" -> "constructions"
_RE_EOL_HYPH = re.compile(
    r"(?<=[a-zà-ÿ])-[ \t]*\r?\n[ \t]*(?=[a-zà-ÿ])", flags=re.UNICODE
)

_RE_SPECIAL_SPACES = re.compile("[{}]".format(re.escape(_NBSP + _THIN + _NNBSP)))
_RE_CONTROL = re.compile(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]")
_RE_MANY_SPACES = re.compile(r"[ \t]{2,}")
_RE_BLANK_LINES = re.compile(r"\n\s*\n+")
_RE_ANY_WS = re.compile(r"\s+")

_RE_DASHES = re.compile("[\u2010\u2011\u2012\u2013\u2014\u2015\u2212]")
_RE_DQUOTES = re.compile("[\u201c\u201d\u201e\u00ab\u00bb]")
_RE_SQUOTES = re.compile("[\u2018\u2019\u201a\u2032]")
_RE_LIGATURE_OE = re.compile("\u0153")
_RE_DECIMAL_COMMA = re.compile(r"(?<=\d),(?=\d)")
_RE_SQUARE_METRE = re.compile(r"\bm2\b")
_RE_PAGE_NUMBER = re.compile(r"\bpage\s+\d+(?:\s*/\s*\d+)?\b", flags=re.IGNORECASE)


def normalize_hyphenation(text: str) -> str:
    if not text:
        return text
    s = text

    # 1) Normalize exotic spaces and remove soft hyphens
    s = _RE_SOFT_HYPHEN.sub("", s)
    s = _RE_SPECIAL_SPACES.sub(" ", s)

    # 2) Join words broken by hyphen at end of line (lowercase on both sides only)
    s = _RE_EOL_HYPH.sub("", s)

    # 3) Collapse long runs of spaces (but keep single newlines)
    s = _RE_MANY_SPACES.sub(" ", s)

    return s


def normalize_document_text(text: str) -> str:
    """
    Normalization applied once to the raw PDF text.
    Line structure is kept so that zone headings stay detectable.
    """
    if not text:
        return ""
    s = _RE_CONTROL.sub("", text)
    s = normalize_hyphenation(s)
    s = _RE_DASHES.sub("-", s)
    s = _RE_DQUOTES.sub('"', s)
    s = _RE_SQUOTES.sub("'", s)
    s = _RE_LIGATURE_OE.sub("oe", s)
    s = _RE_DECIMAL_COMMA.sub(".", s)
    s = _RE_SQUARE_METRE.sub("m²", s)
    s = _RE_PAGE_NUMBER.sub("", s)
    s = "\n".join(line.strip() for line in s.splitlines())
    s = _RE_BLANK_LINES.sub("\n", s)
    return s.strip()


def normalize_for_matching(text: str) -> str:
    """
    Input of the pattern library: document normalization plus whitespace
    collapsed to single spaces.
    """
    return _RE_ANY_WS.sub(" ", normalize_document_text(text)).strip()
