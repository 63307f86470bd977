"""
SQL text helpers.

- `standardize_placeholders()` - Convert %s <-> ? for a dialect
- `sanitize()` - Make a dataset/column name usable as an unquoted identifier
"""
import re
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any


class TokenType(Enum):
    """Token types identified during SQL parsing."""
    SQL_TEXT = auto()
    STRING_LITERAL = auto()
    POSITIONAL_PH = auto()      # %s or ?
    REGEXP_FUNC = auto()


@dataclass(slots=True)
class Token:
    """Token from SQL parsing."""
    type: TokenType
    text: str
    start: int
    end: int


# String literals are matched first so placeholders inside them are left alone.
# The regexp pattern handles literals inside the function call to avoid
# rewriting the ? quantifier of patterns like '(CN|US)?'
_TOKENIZE = re.compile(r"""
    (?P<string>'(?:[^']|'')*'|"(?:[^"]|"")*")
    |(?P<regexp>regexp_replace\s*\((?:[^()'"]|'(?:[^']|'')*'|"(?:[^"]|"")*"|\((?:[^()'"]|'(?:[^']|'')*'|"(?:[^"]|"")*")*\))*\))
    |(?P<percent_s>%s)
    |(?P<qmark>\?)
""", re.IGNORECASE | re.VERBOSE)


def tokenize_sql(sql: str) -> list[Token]:
    """Parse SQL into tokens in a single pass.

    Parameters
        sql: SQL query string

    Returns
        List of tokens preserving all SQL text
    """
    tokens = []
    last_end = 0

    for match in _TOKENIZE.finditer(sql):
        start, end = match.span()

        if start > last_end:
            tokens.append(Token(type=TokenType.SQL_TEXT, text=sql[last_end:start],
                                start=last_end, end=start))

        if match.group('string'):
            ttype = TokenType.STRING_LITERAL
        elif match.group('regexp'):
            ttype = TokenType.REGEXP_FUNC
        else:
            ttype = TokenType.POSITIONAL_PH

        tokens.append(Token(type=ttype, text=match.group(0), start=start, end=end))
        last_end = end

    if last_end < len(sql):
        tokens.append(Token(type=TokenType.SQL_TEXT, text=sql[last_end:],
                            start=last_end, end=len(sql)))

    return tokens


def standardize_placeholders(sql: str, dialect: str = 'postgresql') -> str:
    """Convert placeholders between %s and ? based on dialect.

    Parameters
        sql: SQL query string
        dialect: Database dialect

    Returns
        SQL with standardized placeholders
    """
    if not sql:
        return sql

    if dialect == 'sqlite':
        source, target = '%s', '?'
    elif dialect == 'postgresql':
        source, target = '?', '%s'
    else:
        return sql

    if source not in sql:
        return sql

    result = []
    for token in tokenize_sql(sql):
        if token.type == TokenType.POSITIONAL_PH and token.text == source:
            result.append(target)
        else:
            result.append(token.text)
    return ''.join(result)


def sanitize(name: Any) -> str:
    """Rewrite a dataset or column name into an identifier.

    Case is preserved; hyphens become underscores. Non-string names are
    stringified verbatim.
    """
    return str(name).replace('-', '_')
