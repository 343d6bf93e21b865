"""Response parsing -- turns raw model text into a ``ParsedProject``.

Quick usage::

    from llm_scaffold.parser import parse_text

    project = parse_text(raw_text)
    for entry in project.files:
        print(entry.path, entry.kind)
"""

from llm_scaffold.parser.response_parser import classify_kind, normalize_path, parse, parse_text

__all__ = [
    "classify_kind",
    "normalize_path",
    "parse",
    "parse_text",
]
