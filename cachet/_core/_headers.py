"""
Header containers and Cache-Control parsing.

Token and quoted-string handling follows the RFC 7230 rules for HTTP/1.1.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import (
    Any,
    Dict,
    Iterator,
    List,
    Mapping,
    MutableMapping,
    Optional,
    Tuple,
    Union,
)

__all__ = (
    "CacheControl",
    "Headers",
    "build_cache_control",
    "parse_cache_control",
)

# Cap numeric directive values at max int32 for compatibility
MAX_DELTA_SECONDS = 2147483647


def is_char(c: str) -> bool:
    """
    Check if character is a valid ASCII character (0-127).

    Per RFC 7230: CHAR = any US-ASCII character (octets 0 - 127)
    """
    if not c:
        return False
    return ord(c) <= 127


def is_ctl(c: str) -> bool:
    """
    Check if character is a control character.

    Per RFC 7230: CTL = control characters (0-31 and 127)
    """
    if not c:
        return False
    b = ord(c)
    return b <= 31 or b == 127


def is_separator(c: str) -> bool:
    """
    Check if character is an HTTP separator.

    Per RFC 2616 Section 2.2:
    separators = "(" | ")" | "<" | ">" | "@"
               | "," | ";" | ":" | "\" | <">
               | "/" | "[" | "]" | "?" | "="
               | "{" | "}" | SP | HT
    """
    if not c:
        return False
    return c in '()<>@,;:\\"/[]?={} \t'


def is_token(c: str) -> bool:
    """
    Check if character is valid in an HTTP token.

    Per RFC 7230 Section 3.2.6:
    token = 1*tchar
    tchar = "!" / "#" / "$" / "%" / "&" / "'" / "*"
          / "+" / "-" / "." / "0"-"9" / "A"-"Z"
          / "^" / "_" / "`" / "a"-"z" / "|" / "~"

    Examples:
        >>> is_token('a')
        True
        >>> is_token('-')
        True
        >>> is_token(' ')
        False
        >>> is_token('=')
        False
    """
    return is_char(c) and not is_ctl(c) and not is_separator(c)


def is_qd_text(c: str) -> bool:
    r"""
    Check if character is valid in quoted-text.

    Per RFC 7230 Section 3.2.6:
    qdtext = HTAB / SP / %x21 / %x23-5B / %x5D-7E / obs-text
    """
    if not c:
        return False

    b = ord(c)
    return b == 0x09 or b == 0x20 or b == 0x21 or (0x23 <= b <= 0x5B) or (0x5D <= b <= 0x7E) or b >= 0x80


def http_unquote(raw: str) -> Tuple[int, str]:
    """
    Unquote an HTTP quoted-string.

    The raw string must begin with a double quote. Only the first quoted
    string is parsed.

    Returns:
        Tuple of (eaten, result) where eaten is the number of characters
        consumed, or -1 when the string is not a valid quoted-string.

    Examples:
        >>> http_unquote('"hello"')
        (7, 'hello')
        >>> http_unquote('"hello\\"world"')
        (14, 'hello"world')
        >>> http_unquote('"test')
        (-1, '')
    """
    if not raw or raw[0] != '"':
        return -1, ""

    buf: List[str] = []
    i = 1

    while i < len(raw):
        b = raw[i]

        if b == '"':
            return i + 1, "".join(buf)

        elif b == "\\":
            if i + 1 >= len(raw):
                return -1, ""
            escaped = raw[i + 1]
            buf.append(escaped if (escaped in "\t " or 0x21 <= ord(escaped) <= 0x7E or ord(escaped) >= 0x80) else "?")
            i += 2

        else:
            buf.append(b if is_qd_text(b) else "?")
            i += 1

    return -1, ""


class Headers(MutableMapping[str, str]):
    """
    Case-insensitive multimap of header names to their values.

    Item access joins repeated values with ", ", `get_list` returns them separately.
    """

    def __init__(self, headers: Optional[Mapping[str, Union[str, List[str]]]] = None) -> None:
        self._headers: Dict[str, List[str]] = {
            k.lower(): ([v] if isinstance(v, str) else list(v)) for k, v in (headers or {}).items()
        }

    def get_list(self, key: str) -> Optional[List[str]]:
        return self._headers.get(key.lower(), None)

    def set(self, key: str, value: str) -> None:
        """Replace every value of `key` with a single `value`."""
        self._headers[key.lower()] = [value]

    def copy(self) -> "Headers":
        return Headers(self._headers)

    def to_dict(self) -> Dict[str, List[str]]:
        return {key: values[:] for key, values in self._headers.items()}

    def multi_items(self) -> List[Tuple[str, str]]:
        """Every (name, value) pair, repeated headers included."""
        return [(key, value) for key, values in self._headers.items() for value in values]

    def __getitem__(self, key: str) -> str:
        return ", ".join(self._headers[key.lower()])

    def __setitem__(self, key: str, value: str) -> None:
        self._headers.setdefault(key.lower(), []).append(value)

    def __delitem__(self, key: str) -> None:
        del self._headers[key.lower()]

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._headers

    def __iter__(self) -> Iterator[str]:
        return iter(self._headers)

    def __len__(self) -> int:
        return len(self._headers)

    def __repr__(self) -> str:
        return repr(self._headers)

    def __str__(self) -> str:
        return str(self._headers)

    def __eq__(self, other_headers: Any) -> bool:
        return isinstance(other_headers, Headers) and self._headers == other_headers._headers


@dataclass(frozen=True)
class CacheControl:
    """
    Parsed view of a Cache-Control header, shared by requests and responses.

    Uses None for unset numeric values. An empty instance asserts nothing:
    it does not mean "must not cache".

    Supported Directives:
    - immutable [RFC8246]
    - max-age [RFC9111, Section 5.2.1.1, 5.2.2.1]
    - max-stale [RFC9111, Section 5.2.1.2]
    - min-fresh [RFC9111, Section 5.2.1.3]
    - must-revalidate [RFC9111, Section 5.2.2.2]
    - no-cache [RFC9111, Section 5.2.1.4, 5.2.2.4]
    - no-store [RFC9111, Section 5.2.1.5, 5.2.2.5]
    - no-transform [RFC9111, Section 5.2.1.6, 5.2.2.6]
    - only-if-cached [RFC9111, Section 5.2.1.7]
    - private [RFC9111, Section 5.2.2.7]
    - proxy-revalidate [RFC9111, Section 5.2.2.8]
    - public [RFC9111, Section 5.2.2.9]
    - s-maxage [RFC9111, Section 5.2.2.10]
    - stale-if-error [RFC5861, Section 4]
    - stale-while-revalidate [RFC5861, Section 3]

    no_cache and private can be:
        - False: directive not present
        - True: directive present without field names
        - tuple of str: directive present with specific field names
    """

    max_age: Optional[int] = None
    s_maxage: Optional[int] = None
    max_stale: Optional[int] = None
    min_fresh: Optional[int] = None
    stale_while_revalidate: Optional[int] = None
    stale_if_error: Optional[int] = None

    no_store: bool = False
    no_transform: bool = False
    only_if_cached: bool = False
    must_revalidate: bool = False
    proxy_revalidate: bool = False
    public: bool = False
    immutable: bool = False

    no_cache: Union[bool, Tuple[str, ...]] = False
    private: Union[bool, Tuple[str, ...]] = False

    # Unrecognized directives, kept verbatim
    extensions: Tuple[str, ...] = field(default=())


NUMERIC_DIRECTIVES = {
    "max-age": "max_age",
    "s-maxage": "s_maxage",
    "max-stale": "max_stale",
    "min-fresh": "min_fresh",
    "stale-while-revalidate": "stale_while_revalidate",
    "stale-if-error": "stale_if_error",
}

FLAG_DIRECTIVES = {
    "no-store": "no_store",
    "no-transform": "no_transform",
    "only-if-cached": "only_if_cached",
    "must-revalidate": "must_revalidate",
    "proxy-revalidate": "proxy_revalidate",
    "public": "public",
    "immutable": "immutable",
}

FIELD_LIST_DIRECTIVES = {
    "no-cache": "no_cache",
    "private": "private",
}


def parse_int_value(value: str) -> Optional[int]:
    """Parse a delta-seconds value, return None if it is negative or not a number."""
    if not (value.isascii() and value.isdigit()):
        return None
    return min(int(value), MAX_DELTA_SECONDS)


def parse_field_names(value: str) -> Tuple[str, ...]:
    """Parse comma-separated field names and canonicalize them."""
    fields = []
    for field_name in value.split(","):
        field_name = field_name.strip()
        if field_name:
            fields.append("-".join(word.capitalize() for word in field_name.split("-")))
    return tuple(fields)


def handle_directive_with_value(directives: Dict[str, Any], extensions: List[str], token: str, value: str) -> None:
    if token in NUMERIC_DIRECTIVES:
        parsed = parse_int_value(value)
        # Invalid numbers are dropped rather than treated as zero
        if parsed is not None:
            directives[NUMERIC_DIRECTIVES[token]] = parsed
    elif token in FIELD_LIST_DIRECTIVES:
        directives[FIELD_LIST_DIRECTIVES[token]] = parse_field_names(value) or True
    elif token in FLAG_DIRECTIVES:
        # A flag directive with an argument is malformed
        return
    else:
        extensions.append(f"{token}={value}")


def handle_directive_without_value(directives: Dict[str, Any], extensions: List[str], token: str) -> None:
    if token == "max-stale":
        # max-stale without value means accept any stale response
        directives["max_stale"] = MAX_DELTA_SECONDS
    elif token in FLAG_DIRECTIVES:
        directives[FLAG_DIRECTIVES[token]] = True
    elif token in FIELD_LIST_DIRECTIVES:
        directives[FIELD_LIST_DIRECTIVES[token]] = True
    elif token in NUMERIC_DIRECTIVES:
        # A numeric directive without its number is ignored
        return
    else:
        extensions.append(token)


def parse(value: str) -> CacheControl:
    """
    Parse a Cache-Control header value character by character.

    Malformed directives are skipped one at a time, so a single bad token
    never hides the rest of the header.
    """
    directives: Dict[str, Any] = {}
    extensions: List[str] = []

    i = 0
    length = len(value)

    while i < length:
        # Skip leading whitespace and commas
        while i < length and value[i] in (" ", "\t", ","):
            i += 1

        if i >= length:
            break

        j = i
        while j < length and is_token(value[j]):
            j += 1

        if j == i:
            # Garbage up to the next comma belongs to a broken directive
            while i < length and value[i] != ",":
                i += 1
            continue

        token = value[i:j].lower()
        while j < length and value[j] in (" ", "\t"):
            j += 1

        if j < length and value[j] == "=":
            k = j + 1

            while k < length and value[k] in (" ", "\t"):
                k += 1

            if k >= length or value[k] == ",":
                # Directive ends with '=' but no value
                i = k
                continue

            if value[k] == '"':
                eaten, result = http_unquote(value[k:])
                if eaten == -1:
                    # Quote mismatch, skip to next directive
                    i = k + 1
                    while i < length and value[i] != ",":
                        i += 1
                    continue

                i = k + eaten
                handle_directive_with_value(directives, extensions, token, result)
            else:
                # Unquoted values, field lists included, end at the next comma
                z = k
                while z < length and value[z] not in (" ", "\t", ","):
                    z += 1

                result = value[k:z]

                i = z
                handle_directive_with_value(directives, extensions, token, result)
        elif j < length and value[j] != ",":
            # Token followed by something that is neither '=' nor ','
            i = j
            while i < length and value[i] != ",":
                i += 1
        else:
            handle_directive_without_value(directives, extensions, token)
            i = j

    return CacheControl(**directives, extensions=tuple(extensions))


def parse_cache_control(value: Optional[str]) -> CacheControl:
    """
    Parse a Cache-Control header from either a request or response.

    This is the main entry point for parsing. An absent header yields an
    empty directive set.

    Examples:
        >>> cc = parse_cache_control("public, max-age=3600, must-revalidate")
        >>> cc.public, cc.max_age, cc.must_revalidate
        (True, 3600, True)

        >>> parse_cache_control('no-cache="Set-Cookie, Authorization"').no_cache
        ('Set-Cookie', 'Authorization')

        >>> parse_cache_control("max-age=-1, stale-if-error=60").max_age is None
        True
    """
    if not value:
        return CacheControl()
    return parse(value)


def _format_directive_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return '"' + ", ".join(value) + '"'
    text = str(value)
    if text and all(is_token(c) for c in text):
        return text
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def build_cache_control(directives: Mapping[str, Any]) -> str:
    """
    Build a Cache-Control header value from a mapping of directives.

    `True` emits the bare directive, `False` and `None` drop it, anything
    else is rendered as `name=value`. Underscored names are accepted.

    Examples:
        >>> build_cache_control({"public": True, "max_age": 60, "no_store": False})
        'public, max-age=60'
        >>> build_cache_control({"no-cache": ["Set-Cookie"]})
        'no-cache="Set-Cookie"'
    """
    parts = []

    for name, value in directives.items():
        name = name.replace("_", "-").lower()
        if value is True:
            parts.append(name)
        elif value is False or value is None:
            continue
        else:
            parts.append(f"{name}={_format_directive_value(value)}")

    return ", ".join(parts)
