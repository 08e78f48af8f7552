"""Tokenizer for Kusto query and command text.

The tokenizer understands enough of the lexical grammar to keep string
literals, comments and bracketed names from leaking into structural
analysis: plain and verbatim strings, multi-line ``` blocks, ``//``
comments, ``['quoted names']`` and timespan literals such as ``1h``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable


class TokenKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    IDENT = "ident"
    OPERATOR = "operator"
    PUNCT = "punct"
    UNTERMINATED = "unterminated"


@dataclass(frozen=True, slots=True)
class Token:
    kind: TokenKind
    text: str
    start: int

    @property
    def end(self) -> int:
        return self.start + len(self.text)

    def is_ident(self, *names: str) -> bool:
        """True for an identifier, optionally one of *names* (case-insensitive)."""
        if self.kind is not TokenKind.IDENT:
            return False
        return not names or self.value.lower() in names

    def is_punct(self, char: str) -> bool:
        return self.kind is TokenKind.PUNCT and self.text == char

    def is_operator(self, *ops: str) -> bool:
        return self.kind is TokenKind.OPERATOR and (not ops or self.text in ops)

    @property
    def value(self) -> str:
        """Identifier name with bracket quoting removed."""
        if self.kind is TokenKind.IDENT and self.text.startswith("["):
            inner = self.text[1:-1].strip()
            return inner[1:-1]
        return self.text


# Ordered: earlier alternatives win.
_TOKEN_SPEC: list[tuple[str, str]] = [
    ("ws", r"\s+"),
    ("comment", r"//[^\n]*"),
    ("block", r"```.*?```"),
    ("open_block", r"```"),
    ("string", r"[hH]?@'[^']*'|[hH]?@\"[^\"]*\""),
    ("string", r"[hH]?'(?:[^'\\\n]|\\.)*'|[hH]?\"(?:[^\"\\\n]|\\.)*\""),
    ("open_string", r"[hH]?@?['\"]"),
    ("bracketed", r"\[\s*'(?:[^'\\]|\\.)*'\s*\]|\[\s*\"(?:[^\"\\]|\\.)*\"\s*\]"),
    ("number", r"\d+(?:\.\d+)?(?:[eE][+-]?\d+)?[A-Za-z]*"),
    ("ident", r"[$A-Za-z_][A-Za-z0-9_]*"),
    ("operator", r"==|!=|<>|<=|>=|=~|!~|=>|\.\.|[<>=+\-*/%!.?:@#]"),
    ("punct", r"[(){}\[\],;|]"),
    ("other", r"."),
]

_MASTER_RE = re.compile(
    "|".join(f"(?P<{name}_{idx}>{pattern})" for idx, (name, pattern) in enumerate(_TOKEN_SPEC)),
    re.DOTALL,
)

_KIND_BY_GROUP: dict[str, TokenKind | None] = {
    "ws": None,
    "comment": None,
    "block": TokenKind.STRING,
    "open_block": TokenKind.UNTERMINATED,
    "string": TokenKind.STRING,
    "open_string": TokenKind.UNTERMINATED,
    "bracketed": TokenKind.IDENT,
    "number": TokenKind.NUMBER,
    "ident": TokenKind.IDENT,
    "operator": TokenKind.OPERATOR,
    "punct": TokenKind.PUNCT,
    "other": TokenKind.OPERATOR,
}


def tokenize(text: str) -> list[Token]:
    """Split *text* into tokens, dropping whitespace and comments.

    Never raises; an unterminated string or block surfaces as a single
    :attr:`TokenKind.UNTERMINATED` token at the opening quote, after which
    the remainder of the text is not tokenized.
    """
    tokens: list[Token] = []
    for match in _MASTER_RE.finditer(text):
        group = match.lastgroup or "other_0"
        kind = _KIND_BY_GROUP[group.rsplit("_", 1)[0]]
        if kind is None:
            continue
        tokens.append(Token(kind, match.group(), match.start()))
        if kind is TokenKind.UNTERMINATED:
            break
    return tokens


def split_top_level(
    tokens: list[Token],
    is_separator: Callable[[Token], bool],
) -> list[list[Token]]:
    """Split *tokens* at separators that are outside any bracket pair."""
    parts: list[list[Token]] = [[]]
    depth = 0
    for token in tokens:
        if token.kind is TokenKind.PUNCT and token.text in "([{":
            depth += 1
        elif token.kind is TokenKind.PUNCT and token.text in ")]}":
            depth = max(depth - 1, 0)
        elif depth == 0 and is_separator(token):
            parts.append([])
            continue
        parts[-1].append(token)
    return parts


def top_level_tokens(tokens: list[Token]) -> list[tuple[int, Token]]:
    """Return ``(index, token)`` for tokens outside any bracket pair."""
    result: list[tuple[int, Token]] = []
    depth = 0
    for idx, token in enumerate(tokens):
        if token.kind is TokenKind.PUNCT and token.text in "([{":
            if depth == 0:
                result.append((idx, token))
            depth += 1
        elif token.kind is TokenKind.PUNCT and token.text in ")]}":
            depth = max(depth - 1, 0)
            if depth == 0:
                result.append((idx, token))
        elif depth == 0:
            result.append((idx, token))
    return result


def matching_close(tokens: list[Token], open_index: int) -> int | None:
    """Index of the bracket closing the one at *open_index*, if present."""
    depth = 0
    for idx in range(open_index, len(tokens)):
        token = tokens[idx]
        if token.kind is not TokenKind.PUNCT:
            continue
        if token.text in "([{":
            depth += 1
        elif token.text in ")]}":
            depth -= 1
            if depth == 0:
                return idx
    return None
