"""Naming helpers for table, class and accessor names."""

from __future__ import annotations

import re


IRREGULAR: dict[str, str] = {
    "person": "people",
    "child": "children",
    "man": "men",
    "woman": "women",
    "mouse": "mice",
    "goose": "geese",
    "datum": "data",
}
IRREGULAR_SINGULAR: dict[str, str] = {plural: singular for singular, plural in IRREGULAR.items()}
UNCOUNTABLE = {"equipment", "information", "metadata", "news", "series", "species", "sheep", "fish"}


def _split_last_word(word: str) -> tuple[str, str]:
    idx = word.rfind("_")
    if idx == -1:
        return "", word
    return word[: idx + 1], word[idx + 1 :]


def pluralize(word: str) -> str:
    if not word:
        return word
    head, last = _split_last_word(word)
    lower = last.lower()
    if lower in UNCOUNTABLE:
        return word
    if lower in IRREGULAR:
        return head + IRREGULAR[lower]
    if lower in IRREGULAR_SINGULAR:
        return word
    if re.search(r"[^aeiou]y$", lower):
        return head + last[:-1] + "ies"
    if re.search(r"(s|x|z|ch|sh)$", lower):
        if lower.endswith("ss") or not lower.endswith("s") or lower.endswith("us"):
            return head + last + "es"
        return word
    return head + last + "s"


def singularize(word: str) -> str:
    if not word:
        return word
    head, last = _split_last_word(word)
    lower = last.lower()
    if lower in UNCOUNTABLE:
        return word
    if lower in IRREGULAR_SINGULAR:
        return head + IRREGULAR_SINGULAR[lower]
    if lower in IRREGULAR:
        return word
    if lower.endswith("ies") and len(lower) > 3:
        return head + last[:-3] + "y"
    if re.search(r"(ss|x|z|ch|sh|us)es$", lower):
        return head + last[:-2]
    if lower.endswith("ss") or lower.endswith("us"):
        return word
    if lower.endswith("s"):
        return head + last[:-1]
    return word


def underscore(word: str) -> str:
    word = word.replace("::", "/")
    word = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", word)
    word = re.sub(r"([a-z\d])([A-Z])", r"\1_\2", word)
    return word.replace("-", "_").lower()


def camelize(word: str, upper: bool = True) -> str:
    parts = [p for p in re.split(r"[_\s/-]+", word) if p]
    if not parts:
        return word
    out = "".join(p[:1].upper() + p[1:] for p in parts)
    if not upper:
        out = out[:1].lower() + out[1:]
    return out


def classify(table_name: str) -> str:
    return camelize(singularize(table_name))


def tableize(class_name: str) -> str:
    return pluralize(underscore(class_name))


def humanize(word: str) -> str:
    text = underscore(word).replace("_", " ").strip()
    return text[:1].upper() + text[1:]
