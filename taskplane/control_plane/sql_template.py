"""
SQL Template Binding

Parameter substitution and pagination for stored task statements run through
the ad-hoc execution path.

Two placeholder syntaxes are supported:

- ``#{name}`` is replaced with the value wrapped in single quotes.
- ``${name}`` is replaced with the value verbatim.

A missing or empty parameter resolves to the bare SQL token ``null`` for both
syntaxes. Values are inserted as-is: nothing is escaped, so this is not an
injection defense and must only be fed by trusted callers.
"""
import re
from typing import List, Mapping, Optional, Tuple

QUOTED_PLACEHOLDER = re.compile(r"#\{(.+?)\}")
RAW_PLACEHOLDER = re.compile(r"\$\{(.+?)\}")

NULL_TOKEN = "null"


def _lookup(params: Mapping[str, str], key: str) -> Optional[str]:
    value = params.get(key)
    return value if value else None


def _quoted(params: Mapping[str, str], key: str) -> str:
    value = _lookup(params, key)
    return f"'{value}'" if value is not None else NULL_TOKEN


def _raw(params: Mapping[str, str], key: str) -> str:
    value = _lookup(params, key)
    return value if value is not None else NULL_TOKEN


def bind(template: str, params: Mapping[str, str]) -> str:
    """
    Substitute both placeholder syntaxes in ``template``.

    The quoted pass runs over the whole template first. The raw pass then runs
    only over the template text between quoted matches, so it never sees text
    inserted by the quoted pass. Each pass replaces every match exactly once;
    inserted values are not rescanned.

    Args:
        template: Stored statement text (left untouched)
        params: Placeholder name to value mapping

    Returns:
        The bound statement
    """
    # (text, already_substituted)
    segments: List[Tuple[str, bool]] = []
    pos = 0
    for match in QUOTED_PLACEHOLDER.finditer(template):
        segments.append((template[pos:match.start()], False))
        segments.append((_quoted(params, match.group(1)), True))
        pos = match.end()
    segments.append((template[pos:], False))

    return "".join(
        text if substituted else RAW_PLACEHOLDER.sub(lambda m: _raw(params, m.group(1)), text)
        for text, substituted in segments
    )


def paginate(sql: str, limit: Optional[str] = None, offset: Optional[str] = None) -> str:
    """
    Append a LIMIT/OFFSET clause when a limit is given.

    ``offset`` defaults to ``"0"`` and has no effect without a limit. Neither
    value is checked for being numeric.
    """
    if not offset:
        offset = "0"
    if limit:
        return f"{sql} LIMIT {limit} OFFSET {offset}"
    return sql
