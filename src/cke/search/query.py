"""Query tokenizer and FTS5 expression builder.

Query syntax:
- bare words are OR-ed terms (stop-words dropped);
- ``"quoted runs"`` are phrases;
- ``field:value`` / ``field:"a phrase"`` restricts a term to one of
  ``content``, ``path`` or ``language`` and must match (AND).

Bare terms only look at symbol text (name, identifier parts, docs, code);
paths are reachable through ``path:`` alone.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from cke.errors import InvalidQueryError

STOP_WORDS: frozenset[str] = frozenset(
    """
    the a an and or but in on at to for with by of from about into through
    after before during above below up down out over under again further then
    once here there when where why how all any both each few more most other
    some such no nor not only own same so than too very s t can will just don
    should now
    """.split()
)

FIELDS: frozenset[str] = frozenset(["content", "path", "language"])

ELEMENTS = "elements"
FILES = "files"

# column filter per table for bare terms and each field
_COLUMNS: dict[str, dict[str | None, str]] = {
    ELEMENTS: {
        None: "name terms doc code_snippet",
        "content": "doc code_snippet",
        "path": "path",
        "language": "language",
    },
    FILES: {
        None: "content",
        "content": "content",
        "path": "path",
        "language": "language",
    },
}

_WORD_RE = re.compile(r"[^\W_]+")
_FIELD_RE = re.compile(r"^(?P<field>[A-Za-z_][A-Za-z0-9_]*):(?!:)(?P<value>.*)$", re.DOTALL)

# Shorter words are matched exactly; longer ones also by prefix.
_MIN_PREFIX_LEN = 3


def words(text: str) -> list[str]:
    """Split on non-alphanumerics and lowercase."""
    return [w.lower() for w in _WORD_RE.findall(text)]


def keywords(text: str) -> list[str]:
    """Lowercased words of *text* with stop-words removed, first occurrence kept."""
    seen: dict[str, None] = {}
    for word in words(text):
        if word not in STOP_WORDS:
            seen.setdefault(word)
    return list(seen)


def plain_text(raw: str) -> str:
    """*raw* without its ``field:value`` tokens."""
    return " ".join(tok for tok in raw.split() if not _FIELD_RE.match(tok))


@dataclass(frozen=True)
class QueryTerm:
    text: str
    phrase: bool = False
    field: str | None = None


@dataclass
class ParsedQuery:
    """Tokenized query.

    Attributes:
        raw: The query as given.
        terms: Bare words and phrases (OR-ed), stop-words removed.
        restrictions: Field-restricted terms (AND-ed).
        unknown_fields: Field names outside ``FIELDS``; such queries match nothing.
        had_words: Whether any bare word appeared before stop-word removal.
    """

    raw: str
    terms: list[QueryTerm] = field(default_factory=list)
    restrictions: list[QueryTerm] = field(default_factory=list)
    unknown_fields: list[str] = field(default_factory=list)
    had_words: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.raw.strip()

    @property
    def stop_words_only(self) -> bool:
        return (
            self.had_words
            and not self.terms
            and not self.restrictions
            and not self.unknown_fields
        )


# ------------------------------------------------------------------
# Tokenizer
# ------------------------------------------------------------------


def _split(raw: str) -> list[tuple[str, bool]]:
    """Split on whitespace outside double quotes; returns (token, quoted) pairs.

    A quoted run glued to ``field:`` stays one token (``path:"src dir"``).
    """
    tokens: list[tuple[str, bool]] = []
    i, n = 0, len(raw)
    while i < n:
        if raw[i].isspace():
            i += 1
            continue
        start = i
        quoted = False
        while i < n and not raw[i].isspace():
            if raw[i] == '"':
                end = raw.find('"', i + 1)
                if end == -1:
                    raise InvalidQueryError(f"Unterminated quote in query: {raw!r}")
                quoted = True
                i = end + 1
            else:
                i += 1
        tokens.append((raw[start:i], quoted))
    return tokens


def _unquote(value: str) -> tuple[str, bool]:
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        return value[1:-1], True
    return value.replace('"', " "), False


def parse_query(raw: str) -> ParsedQuery:
    """Tokenize *raw*.

    Raises:
        InvalidQueryError: Unterminated quotes, ``field:`` without a value
            or ``:value`` without a field.
    """
    parsed = ParsedQuery(raw=raw)
    for token, _quoted in _split(raw):
        if token.startswith(":") and not token.startswith("::"):
            raise InvalidQueryError(f"Missing field name before ':' in {token!r}")
        m = _FIELD_RE.match(token)
        if m and not token.startswith('"'):
            name = m.group("field").lower()
            value, is_phrase = _unquote(m.group("value"))
            if not value.strip():
                raise InvalidQueryError(f"Missing value for field '{name}:'")
            if name not in FIELDS:
                parsed.unknown_fields.append(name)
                continue
            if name == "language":
                value = value.strip().lower()
            parsed.restrictions.append(
                QueryTerm(value, phrase=is_phrase or len(words(value)) > 1, field=name)
            )
            continue

        text, is_phrase = _unquote(token)
        if is_phrase:
            if words(text):
                parsed.had_words = True
                parsed.terms.append(QueryTerm(text, phrase=True))
            continue
        for word in words(text):
            parsed.had_words = True
            if word not in STOP_WORDS:
                parsed.terms.append(QueryTerm(word))
    return parsed


# ------------------------------------------------------------------
# FTS5 expression builder
# ------------------------------------------------------------------


def fts_string(text: str) -> str:
    """Quote *text* as an FTS5 string (a phrase when it holds several tokens)."""
    return '"' + text.replace('"', '""') + '"'


def _term_expr(term: QueryTerm) -> str:
    quoted = fts_string(term.text)
    if term.phrase or term.field is not None or len(term.text) < _MIN_PREFIX_LEN:
        return quoted
    return f"({quoted} OR {quoted}*)"


def build_match(parsed: ParsedQuery, table: str) -> str | None:
    """FTS5 MATCH expression for *table* (``ELEMENTS`` or ``FILES``).

    Returns None when the query has nothing to match.
    """
    columns = _COLUMNS[table]
    parts: list[str] = []
    if parsed.terms:
        bare = " OR ".join(_term_expr(t) for t in parsed.terms)
        parts.append(f"{{{columns[None]}}} : ({bare})")
    for term in parsed.restrictions:
        parts.append(f"{{{columns[term.field]}}} : {_term_expr(term)}")
    if not parts:
        return None
    return " AND ".join(parts)
