"""Parsing of space-separated key=value parameter lists."""

from __future__ import annotations


def parse_parameters(text: str) -> dict[str, str]:
    """Split ``text`` on single spaces into a mapping of key to value.

    Each word is cut at its first ``=``; a word without one maps to an empty
    value, and a value ends at the first newline. Empty words (from doubled
    or leading spaces) give an empty key, a single trailing space gives
    nothing, and later keys overwrite earlier ones.
    """
    words = text.split(" ")
    if words and words[-1] == "":
        words.pop()

    result: dict[str, str] = {}
    for word in words:
        key, _, value = word.partition("=")
        result[key] = value.split("\n", 1)[0]
    return result