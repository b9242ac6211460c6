"""Split a chapter body from its trailing footnote block.

The footnote block is recognised only by its first line looking like
``a 27:2 ...`` (a lowercase letter, then chapter:verse). The classifier is
known to misfire on a few chapters; the "references" button depends on its
exact behaviour, so it is kept as is.
"""

import re
from dataclasses import dataclass

REFERENCE_LINE = re.compile(r"^[a-z]\s+[0-9]+:[0-9]+")

_SECTION_BREAK = re.compile(r"\n\s*\n")
_EXTRA_BREAKS = re.compile(r"\n\s*\n\s*\n+")


@dataclass(frozen=True)
class ReferenceBlock:
    main_text: str
    references: str
    has_references: bool


@dataclass(frozen=True)
class ProcessedContent:
    main_text: str
    references: str
    has_references: bool
    full_text: str
    clean_main_text: str


def separate(full_text: str) -> ReferenceBlock:
    if not full_text:
        return ReferenceBlock(main_text=full_text or "", references="", has_references=False)

    sections = _SECTION_BREAK.split(full_text)
    if len(sections) <= 1:
        return ReferenceBlock(main_text=full_text, references="", has_references=False)

    last = sections[-1].strip()
    if not REFERENCE_LINE.match(last):
        return ReferenceBlock(main_text=full_text, references="", has_references=False)

    main_text = "\n\n".join(sections[:-1]).strip()
    return ReferenceBlock(main_text=main_text, references=last, has_references=True)


def strip_inline_markers(text: str) -> str:
    if not text:
        return text
    cleaned = re.sub(r"\[[^\]]*\]", "", text)
    cleaned = re.sub(r"\([^)]*\)", "", cleaned)
    cleaned = re.sub(r"[ \t]+", " ", cleaned)
    cleaned = _EXTRA_BREAKS.sub("\n\n", cleaned)
    return cleaned.strip()


def format_references(references: str) -> str:
    lines = (line.strip() for line in (references or "").split("\n"))
    return "\n".join(line for line in lines if line)


def is_reference_line(line: str) -> bool:
    return bool(REFERENCE_LINE.match(line))


def process_content(
    full_text: str,
    include_references: bool = True,
    clean_inline: bool = True,
) -> ProcessedContent:
    block = separate(full_text)

    main_text = block.main_text
    if clean_inline:
        main_text = strip_inline_markers(main_text)

    references = ""
    assembled = main_text
    if include_references and block.has_references:
        references = format_references(block.references)
        assembled = main_text + "\n\n" + references

    return ProcessedContent(
        main_text=main_text,
        references=references,
        has_references=block.has_references,
        full_text=assembled,
        clean_main_text=strip_inline_markers(main_text),
    )
