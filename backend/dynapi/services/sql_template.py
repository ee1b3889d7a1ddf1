"""
SQL template placeholders

Endpoint SQL is trusted author text with placeholder slots for caller
values. Three spellings are recognised outside string literals, quoted
identifiers, comments and dollar-quoted bodies:

    $1, $2 ...      ordinal, bound in parameter declaration order
    :name           named
    {name}          named

Templates are compiled into SQLAlchemy ``text()`` statements whose bind
parameters carry the values; values are never written into the SQL text.
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from dynapi.core.errors import DefinitionError

_DOLLAR_TAG_RE = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")
_ORDINAL_RE = re.compile(r"\$(\d+)")
_NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_BRACE_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")

# Same shape SQLAlchemy's text() uses to find binds; colons matching it in
# literal regions must be escaped.
_TEXT_BIND_RE = re.compile(r"(?<![:\w\\]):(?=\w)")

ORDINAL = "ordinal"
NAMED = "named"


@dataclass(frozen=True)
class Placeholder:
    style: str
    name: str          # ordinal placeholders use the digits as name
    start: int
    end: int

    @property
    def index(self) -> int:
        return int(self.name) if self.style == ORDINAL else -1


@dataclass
class BoundArgs:
    """Type-checked argument values in parameter declaration order."""

    names: List[str]
    values: List[Any]

    def by_name(self) -> Dict[str, Any]:
        return dict(zip(self.names, self.values))

    def __len__(self) -> int:
        return len(self.values)


@dataclass
class CompiledStatement:
    sql: str
    params: Dict[str, Any]


def _is_word_char(sql: str, i: int) -> bool:
    return i >= 0 and (sql[i].isalnum() or sql[i] == "_")


def _skip_quoted(sql: str, i: int, quote: str, backslash_escapes: bool = False) -> int:
    n = len(sql)
    i += 1
    while i < n:
        if backslash_escapes and sql[i] == "\\":
            i += 2
            continue
        if sql[i] == quote:
            if i + 1 < n and sql[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return n


def _scan(sql: str):
    """Yield ("code", start, end) / ("literal", start, end) / Placeholder items."""
    n = len(sql)
    i = 0
    code_start = 0

    def flush(upto):
        if upto > code_start:
            return ("code", code_start, upto)
        return None

    while i < n:
        c = sql[i]
        literal_end = None

        if c == "'" or c == '"':
            # E'...' strings honour backslash escapes
            escapes = c == "'" and i > 0 and sql[i - 1] in "eE" and not _is_word_char(sql, i - 2)
            literal_end = _skip_quoted(sql, i, c, escapes)
        elif sql.startswith("--", i):
            newline = sql.find("\n", i)
            literal_end = n if newline < 0 else newline
        elif sql.startswith("/*", i):
            close = sql.find("*/", i + 2)
            literal_end = n if close < 0 else close + 2
        elif c == "$" and not _is_word_char(sql, i - 1):
            tag = _DOLLAR_TAG_RE.match(sql, i)
            if tag:
                close = sql.find(tag.group(0), tag.end())
                literal_end = n if close < 0 else close + len(tag.group(0))
            else:
                ordinal = _ORDINAL_RE.match(sql, i)
                if ordinal:
                    chunk = flush(i)
                    if chunk:
                        yield chunk
                    yield Placeholder(ORDINAL, ordinal.group(1), i, ordinal.end())
                    i = code_start = ordinal.end()
                    continue
        elif c == ":":
            if sql.startswith("::", i):
                i += 2
                continue
            name = _NAME_RE.match(sql, i + 1)
            if name and not (_is_word_char(sql, i - 1) or (i > 0 and sql[i - 1] in ":\\")):
                chunk = flush(i)
                if chunk:
                    yield chunk
                yield Placeholder(NAMED, name.group(0), i, name.end())
                i = code_start = name.end()
                continue
        elif c == "{":
            brace = _BRACE_RE.match(sql, i)
            if brace:
                chunk = flush(i)
                if chunk:
                    yield chunk
                yield Placeholder(NAMED, brace.group(1), i, brace.end())
                i = code_start = brace.end()
                continue

        if literal_end is not None:
            chunk = flush(i)
            if chunk:
                yield chunk
            yield ("literal", i, literal_end)
            i = code_start = literal_end
            continue
        i += 1

    tail = flush(n)
    if tail:
        yield tail


def escape_colons(text: str) -> str:
    """Escape colons that text() would otherwise read as bind parameters."""
    return _TEXT_BIND_RE.sub(r"\\:", text)


def find_placeholders(sql: str) -> List[Placeholder]:
    """All placeholders in ``sql`` in textual order."""
    return [item for item in _scan(sql) if isinstance(item, Placeholder)]


def placeholder_style(placeholders: List[Placeholder]) -> Optional[str]:
    styles = {p.style for p in placeholders}
    if len(styles) > 1:
        raise DefinitionError("SQL must not mix ordinal ($1) and named (:name / {name}) placeholders")
    return styles.pop() if styles else None


def compile_template(sql: str, args: BoundArgs) -> CompiledStatement:
    """
    Turn a template plus bound arguments into a parameterized statement.

    Raises DefinitionError if a placeholder has no bound argument; authoring
    rules reject such templates, so this only fires on a corrupted definition.
    """
    named = args.by_name()
    params: Dict[str, Any] = {}
    out: List[str] = []

    for item in _scan(sql):
        if isinstance(item, Placeholder):
            if item.style == ORDINAL:
                position = item.index
                if position < 1 or position > len(args.values):
                    raise DefinitionError(f"Placeholder ${position} has no matching parameter")
                key = f"p{position}"
                params[key] = args.values[position - 1]
            else:
                if item.name not in named:
                    raise DefinitionError(f"Placeholder '{item.name}' has no matching parameter")
                key = item.name
                params[key] = named[item.name]
            # "$1::int" must not become ":p1::int", which text() cannot parse
            if sql.startswith(":", item.end):
                out.append(f"(:{key})")
            else:
                out.append(f":{key}")
        else:
            _, start, end = item
            out.append(escape_colons(sql[start:end]))

    return CompiledStatement(sql="".join(out), params=params)
