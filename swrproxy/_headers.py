from __future__ import annotations

from typing import (
    Any,
    Iterable,
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
    "parse_cache_control",
)

MAX_DELTA_SECONDS = 2147483647  # max int32


class Headers(MutableMapping[str, str]):
    """
    Case-insensitive, multi-valued header mapping.

    Reading a header joins its values with ", ". Assigning appends a value,
    so callers that want to replace a header must delete it first.
    """

    def __init__(self, headers: Union[Mapping[str, Union[str, List[str]]], Iterable[Tuple[str, str]], None] = None) -> None:
        self._headers: dict[str, list[str]] = {}

        if headers is None:
            return

        items = headers.items() if isinstance(headers, Mapping) else headers
        for key, value in items:
            values = [value] if isinstance(value, str) else list(value)
            self._headers.setdefault(key.lower(), []).extend(values)

    def get_list(self, key: str) -> Optional[List[str]]:
        return self._headers.get(key.lower(), None)

    def multi_items(self) -> List[Tuple[str, str]]:
        return [(key, value) for key, values in self._headers.items() for value in values]

    def copy(self) -> "Headers":
        return Headers({key: values[:] for key, values in self._headers.items()})

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


class CacheControl:
    """
    The Cache-Control directives the proxy acts on.

    Every field is None when the directive is absent. A directive that is
    present without a usable numeric value is stored as 0.

    Supported Directives:
    - max-age [RFC9111, Section 5.2.2.1]
    - s-maxage [RFC9111, Section 5.2.2.10]
    - stale-while-revalidate [RFC5861, Section 3]

    Anything else is collected in `extensions` and otherwise ignored.
    """

    def __init__(
        self,
        max_age: Optional[int] = None,
        s_maxage: Optional[int] = None,
        stale_while_revalidate: Optional[int] = None,
    ) -> None:
        self.max_age = max_age
        self.s_maxage = s_maxage
        self.stale_while_revalidate = stale_while_revalidate
        self.extensions: List[str] = []

    def __eq__(self, other: Any) -> bool:
        return (
            isinstance(other, CacheControl)
            and self.max_age == other.max_age
            and self.s_maxage == other.s_maxage
            and self.stale_while_revalidate == other.stale_while_revalidate
        )

    def __repr__(self) -> str:
        fields = ", ".join(
            f"{key}={getattr(self, key)}"
            for key in ("max_age", "s_maxage", "stale_while_revalidate")
            if getattr(self, key) is not None
        )
        return f"<{type(self).__name__} {fields}>"


def parse_int_value(value: Optional[str]) -> int:
    """Parse a delta-seconds value, coercing anything unusable to 0."""
    if value is None:
        return 0

    value = value.strip()
    if len(value) >= 2 and value[0] == '"' and value[-1] == '"':
        value = value[1:-1]

    try:
        val = int(value)
    except (ValueError, OverflowError):
        try:
            val = int(float(value))
        except (ValueError, OverflowError):
            return 0

    return min(val, MAX_DELTA_SECONDS) if val >= 0 else 0


def handle_directive(cc: CacheControl, token: str, value: Optional[str]) -> None:
    if token == "max-age":
        cc.max_age = parse_int_value(value)

    elif token == "s-maxage":
        cc.s_maxage = parse_int_value(value)

    elif token == "stale-while-revalidate":
        cc.stale_while_revalidate = parse_int_value(value)

    else:
        cc.extensions.append(token if value is None else f"{token}={value}")


def parse_cache_control(value: Optional[str]) -> CacheControl:
    """
    Parse a Cache-Control header value.

    The parser is lenient: it never raises, skips blank directives and
    normalises directive names to lower case.

    Examples:
        >>> cc = parse_cache_control("public, s-maxage=60, stale-while-revalidate=30")
        >>> cc.s_maxage
        60
        >>> cc.stale_while_revalidate
        30
        >>> parse_cache_control("max-age=abc").max_age
        0
        >>> parse_cache_control("public").max_age is None
        True
    """
    cc = CacheControl()

    if not value:
        return cc

    for directive in value.split(","):
        directive = directive.strip(" \t")
        if not directive:
            continue

        token, sep, directive_value = directive.partition("=")
        token = token.strip(" \t").lower()
        if not token:
            continue

        handle_directive(cc, token, directive_value.strip(" \t") if sep else None)

    return cc
