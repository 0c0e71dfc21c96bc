#  BSD 3-Clause License
#
#  Copyright (c) 2019, Elasticsearch BV
#  All rights reserved.
#
#  Redistribution and use in source and binary forms, with or without
#  modification, are permitted provided that the following conditions are met:
#
#  * Redistributions of source code must retain the above copyright notice, this
#    list of conditions and the following disclaimer.
#
#  * Redistributions in binary form must reproduce the above copyright notice,
#    this list of conditions and the following disclaimer in the documentation
#    and/or other materials provided with the distribution.
#
#  * Neither the name of the copyright holder nor the names of its
#    contributors may be used to endorse or promote products derived from
#    this software without specific prior written permission.
#
#  THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
#  AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
#  IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE
#  DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE
#  FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL
#  DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR
#  SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER
#  CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY,
#  OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE
#  OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

"""Sanitization of SQL statements

Turns raw SQL into a structurally stable, literal-free statement, and
classifies it by operation and main table. The scanner is deliberately
forgiving: malformed or unterminated input is consumed up to the end of the
statement instead of raising.
"""

import re
from collections import namedtuple
from functools import lru_cache
from typing import NamedTuple, Optional

from dbcapture.conf import constants
from dbcapture.utils.encoding import force_text
from dbcapture.utils.logging import get_logger

logger = get_logger("dbcapture.sanitizer")

UNKNOWN = "unknown"
SELECT = "SELECT"
INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"
CALL = "CALL"
MERGE = "MERGE"
OPERATIONS = frozenset([SELECT, INSERT, UPDATE, DELETE, CALL, MERGE])

PLACEHOLDER = "?"

WORD = "word"
NUMBER = "number"
STRING = "string"
IDENTIFIER = "identifier"
PARAM = "param"
COMMENT = "comment"
SPACE = "space"
PUNCT = "punct"
LITERAL = "literal"

LITERAL_KINDS = (NUMBER, STRING)

# keyword after which the main identifier of an operation is found
_TABLE_KEYWORDS = {SELECT: "FROM", DELETE: "FROM", UPDATE: "UPDATE", INSERT: "INTO", MERGE: "INTO"}
# a double quoted token following one of these is an identifier, not a string
_IDENTIFIER_PREFIX_KEYWORDS = frozenset(["FROM", "INTO", "UPDATE", "JOIN", "TABLE", "USING"])
_TABLE_MODIFIERS = frozenset(["ONLY", "LOW_PRIORITY", "IGNORE", "QUICK", "LATERAL"])
_NOT_AN_IDENTIFIER = frozenset(["SELECT", "WHERE", "SET", "VALUES", "DEFAULT", "GROUP", "ORDER", "LIMIT"])
# operators and keywords after which a sign belongs to the following number
_OPERAND_KEYWORDS = frozenset(
    "SELECT WHERE AND OR NOT ON SET VALUES BY HAVING WHEN THEN ELSE CASE IN IS LIKE BETWEEN LIMIT OFFSET RETURN AS".split()
)
_STRING_PREFIXES = frozenset(["N", "X", "B", "E", "U&"])

_NUMBER_RE = re.compile(r"0[xX][0-9a-fA-F]+|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_WORD_RE = re.compile(r"[^\W\d][\w$#@]*")
_WORD_CHAR_RE = re.compile(r"[\w$#@]")
_DOLLAR_QUOTE_RE = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")
_DOLLAR_PARAM_RE = re.compile(r"\$\d+")
_NAMED_PARAM_RE = re.compile(r":(?:[A-Za-z_]\w*|\d+)")
_PYFORMAT_PARAM_RE = re.compile(r"%(?:\([^)]*\))?s")
_BRACKET_IDENTIFIER_RE = re.compile(r"\[([^\W\d][^\[\]'\",]*)\]")


class SanitizedStatement(NamedTuple):
    full_statement: str
    operation: str
    main_identifier: Optional[str]


EMPTY_STATEMENT = SanitizedStatement("", UNKNOWN, None)


class Token(object):
    __slots__ = ("kind", "text", "depth")

    def __init__(self, kind, text, depth=0) -> None:
        self.kind = kind
        self.text = text
        self.depth = depth

    def __eq__(self, other):
        return (
            isinstance(other, Token)
            and self.kind == other.kind
            and self.text == other.text
            and self.depth == other.depth
        )

    def __repr__(self):
        return "<Token {} {!r} @{}>".format(self.kind, self.text, self.depth)


_Part = namedtuple("_Part", ["kind", "text", "space_before", "from_string"])


def _is_escape_string(sql, start):
    """
    True for the opening quote of a Postgres escape string, e.g. E'C:\\temp'
    """
    if start == 0 or sql[start - 1] not in "eE":
        return False
    return start == 1 or not _WORD_CHAR_RE.match(sql[start - 2])


def _scan_quoted(sql, start, quote, backslash_escapes=False):
    """
    Returns the end index of the quoted token starting at `start`. Doubled
    quotes are part of the token. A backslash only escapes the following
    character if `backslash_escapes` is set, so 'C:\\' is a complete literal.
    An unterminated token runs until the end of the statement.
    """
    i = start + 1
    length = len(sql)
    while i < length:
        char = sql[i]
        if backslash_escapes and char == "\\":
            i += 2
            continue
        if char == quote:
            if i + 1 < length and sql[i + 1] == quote:
                i += 2
                continue
            return i + 1
        i += 1
    return length


def _find_or_end(sql, needle, start, include=0):
    idx = sql.find(needle, start)
    if idx < 0:
        return len(sql)
    return idx + include


def tokenize(sql):
    """
    Splits `sql` into a list of tokens. Concatenating the text of all tokens
    yields the input again.
    """
    tokens = []
    depth = 0
    i = 0
    length = len(sql)
    while i < length:
        char = sql[i]
        nxt = sql[i + 1] if i + 1 < length else ""
        kind = PUNCT
        token_depth = depth
        if char.isspace():
            end = i + 1
            while end < length and sql[end].isspace():
                end += 1
            kind = SPACE
        elif char == "-" and nxt == "-":
            end = _find_or_end(sql, "\n", i)
            kind = COMMENT
        elif char == "/" and nxt == "*":
            end = _find_or_end(sql, "*/", i + 2, include=2)
            kind = COMMENT
        elif char in ("'", '"'):
            end = _scan_quoted(sql, i, char, backslash_escapes=char == "'" and _is_escape_string(sql, i))
            kind = STRING
        elif char == "`":
            end = _find_or_end(sql, "`", i + 1, include=1)
            kind = IDENTIFIER
        elif char == "[" and _BRACKET_IDENTIFIER_RE.match(sql, i):
            end = _BRACKET_IDENTIFIER_RE.match(sql, i).end()
            kind = IDENTIFIER
        elif char == "$" and _DOLLAR_PARAM_RE.match(sql, i):
            end = _DOLLAR_PARAM_RE.match(sql, i).end()
            kind = PARAM
        elif char == "$" and _DOLLAR_QUOTE_RE.match(sql, i):
            # Postgres can use arbitrary characters between two $'s as a
            # literal separation token, e.g.: $fish$ literal $fish$
            tag = _DOLLAR_QUOTE_RE.match(sql, i).group(0)
            end = _find_or_end(sql, tag, i + len(tag), include=len(tag))
            kind = STRING
        elif char == "?":
            end = i + 1
            kind = PARAM
        elif char == ":" and nxt == ":":
            # postgres type cast
            end = i + 2
        elif char == ":" and _NAMED_PARAM_RE.match(sql, i):
            end = _NAMED_PARAM_RE.match(sql, i).end()
            kind = PARAM
        elif char == "%" and _PYFORMAT_PARAM_RE.match(sql, i):
            end = _PYFORMAT_PARAM_RE.match(sql, i).end()
            kind = PARAM
        elif "0" <= char <= "9" or (char == "." and "0" <= nxt <= "9"):
            end = _NUMBER_RE.match(sql, i).end()
            kind = NUMBER
        elif _WORD_RE.match(sql, i):
            end = _WORD_RE.match(sql, i).end()
            kind = WORD
        else:
            end = i + 1
            if char in "([{":
                depth += 1
            elif char in ")]}":
                depth = max(depth - 1, 0)
                token_depth = depth
        tokens.append(Token(kind, sql[i:end], token_depth))
        i = end
    return tokens


def _mark_quoted_identifiers(significant):
    """
    Double quoted tokens directly after a table keyword (or after a dot
    following such an identifier) name tables, e.g. FROM "public"."orders"
    """
    previous = None
    before_previous = None
    for token in significant:
        if token.kind == STRING and token.text.startswith('"'):
            if previous is not None and previous.kind == WORD and previous.text.upper() in _IDENTIFIER_PREFIX_KEYWORDS:
                token.kind = IDENTIFIER
            elif (
                previous is not None
                and previous.text == "."
                and before_previous is not None
                and before_previous.kind == IDENTIFIER
            ):
                token.kind = IDENTIFIER
        before_previous, previous = previous, token


def _is_operand(part):
    if part is None:
        return False
    if part.kind in (LITERAL, IDENTIFIER, PARAM):
        return True
    if part.kind == WORD:
        return part.text.upper() not in _OPERAND_KEYWORDS
    return part.text in (")", "]")


def _collapse_in_lists(parts):
    """
    IN (?, ?, ?) -> IN (?)
    """
    result = []
    i = 0
    while i < len(parts):
        part = parts[i]
        result.append(part)
        i += 1
        if not (part.kind == WORD and part.text.upper() == "IN" and i < len(parts) and parts[i].text == "("):
            continue
        j = i + 1
        expect_value = True
        closed = False
        while j < len(parts):
            item = parts[j]
            if expect_value and item.text == PLACEHOLDER and item.kind in (LITERAL, PARAM):
                expect_value = False
            elif not expect_value and item.text == ",":
                expect_value = True
            elif not expect_value and item.text == ")":
                closed = True
                break
            else:
                break
            j += 1
        if closed:
            result.append(parts[i])
            result.append(_Part(LITERAL, PLACEHOLDER, False, False))
            result.append(parts[j])
            i = j + 1
    return result


def _render(tokens):
    parts = []
    pending_space = False
    for token in tokens:
        if token.kind in (SPACE, COMMENT):
            pending_space = bool(parts)
            continue
        if token.kind not in LITERAL_KINDS:
            parts.append(_Part(token.kind, token.text, pending_space, False))
            pending_space = False
            continue
        is_string = token.kind == STRING
        last = parts[-1] if parts else None
        if is_string and last is not None and last.kind == LITERAL and last.from_string:
            # adjacent string literals are concatenated by SQL
            pending_space = False
            continue
        if (
            is_string
            and not pending_space
            and last is not None
            and last.kind == WORD
            and (last.text.upper() in _STRING_PREFIXES or last.text.startswith("_"))
        ):
            # typed or charset-introduced string, e.g. N'foo' or _utf8'foo'
            parts.pop()
            pending_space = last.space_before
        elif (
            not is_string
            and not pending_space
            and last is not None
            and last.text in ("-", "+")
            and not _is_operand(parts[-2] if len(parts) > 1 else None)
        ):
            parts.pop()
            pending_space = last.space_before
        parts.append(_Part(LITERAL, PLACEHOLDER, pending_space, is_string))
        pending_space = False
    parts = _collapse_in_lists(parts)
    return "".join((" " + part.text) if part.space_before else part.text for part in parts).strip()


def _is_batch(significant, start):
    seen_separator = False
    for token in significant[start:]:
        if token.kind == PUNCT and token.text == ";":
            seen_separator = True
        elif seen_separator:
            return True
    return False


def _read_identifier(significant, i):
    while (
        i + 1 < len(significant)
        and significant[i].kind == WORD
        and significant[i].text.upper() in _TABLE_MODIFIERS
        and significant[i + 1].kind in (WORD, IDENTIFIER)
    ):
        i += 1
    parts = []
    expect_name = True
    while i < len(significant):
        token = significant[i]
        if expect_name and token.kind == IDENTIFIER:
            parts.append(token.text)
        elif expect_name and token.kind == WORD and (parts or token.text.upper() not in _NOT_AN_IDENTIFIER):
            parts.append(token.text)
        elif not expect_name and token.text == ".":
            parts.append(token.text)
        else:
            break
        expect_name = not expect_name
        i += 1
    identifier = "".join(parts).rstrip(".")
    return identifier or None


def _find_identifier(significant, verb_idx, keyword):
    verb_depth = significant[verb_idx].depth
    candidates = [
        idx
        for idx in range(verb_idx + 1, len(significant))
        if significant[idx].kind == WORD and significant[idx].text.upper() == keyword
    ]
    if not candidates:
        return None
    # prefer the keyword on the statement's own nesting level
    idx = next((c for c in candidates if significant[c].depth == verb_depth), candidates[0])
    while True:
        following = idx + 1
        if following < len(significant) and significant[following].text == "(":
            # derived table, look for the next keyword within the subquery
            idx = next((c for c in candidates if c > following), None)
            if idx is None:
                return None
            continue
        return _read_identifier(significant, following)


def _classify(significant):
    idx = 0
    while idx < len(significant) and significant[idx].text in ("(", "{"):
        idx += 1
    if idx >= len(significant) or significant[idx].kind != WORD:
        return UNKNOWN, None
    verb = significant[idx].text.upper()
    if verb not in OPERATIONS or _is_batch(significant, idx):
        return UNKNOWN, None
    if verb == CALL:
        return CALL, None
    if verb == UPDATE:
        return verb, _read_identifier(significant, idx + 1)
    return verb, _find_identifier(significant, idx, _TABLE_KEYWORDS[verb])


def _sanitize(sql):
    tokens = tokenize(sql)
    significant = [t for t in tokens if t.kind not in (SPACE, COMMENT)]
    _mark_quoted_identifiers(significant)
    operation, identifier = _classify(significant)
    return SanitizedStatement(_render(tokens), operation, identifier)


# statements above CACHEABLE_LENGTH, e.g. bulk inserts with inline values,
# are sanitized on every call instead of being kept in the cache
_cached_sanitize = lru_cache(maxsize=1000)(_sanitize)
CACHEABLE_LENGTH = constants.STATEMENT_MAX_LENGTH


def sanitize(raw_statement) -> SanitizedStatement:
    """
    Sanitizes a raw SQL statement

    :param raw_statement: the SQL statement, as str, bytes or an object whose
                          string representation is the statement. May be None.
    :return: a SanitizedStatement. Literal values in the full statement are
             replaced by "?", the operation is one of SELECT, INSERT, UPDATE,
             DELETE, CALL, MERGE or "unknown".
    """
    if raw_statement is None:
        return EMPTY_STATEMENT
    try:
        sql = force_text(raw_statement, errors="replace")
        if not sql.strip():
            return EMPTY_STATEMENT
        if len(sql) > CACHEABLE_LENGTH:
            return _sanitize(sql)
        return _cached_sanitize(sql)
    except Exception:
        logger.debug("Failed to sanitize statement", exc_info=True)
        return EMPTY_STATEMENT
