from __future__ import annotations

import re
from typing import Iterable

DEFAULT_SENTENCES_PER_PARAGRAPH = 8
DEFAULT_MIN_PARAGRAPH_LENGTH = 50
_SENTENCE_START_RE = re.compile(r"^[A-Z]")
_WHITESPACE_RE = re.compile(r"\s+")


def words_to_sentences(words: Iterable[str]) -> list[str]:
    sentences: list[str] = []
    buffer: list[str] = []
    for word in words:
        if not buffer and not _SENTENCE_START_RE.match(word):
            continue
        buffer.append(word)
        if word.endswith("."):
            sentences.append(" ".join(buffer))
            buffer = []
    return sentences


def sentences_to_paragraphs(
    sentences: list[str],
    sentences_per_paragraph: int = DEFAULT_SENTENCES_PER_PARAGRAPH,
) -> list[str]:
    if sentences_per_paragraph < 1:
        raise ValueError("sentences_per_paragraph must be at least 1.")
    return [
        " ".join(sentences[index : index + sentences_per_paragraph])
        for index in range(0, len(sentences), sentences_per_paragraph)
    ]


def _word_count(text: str) -> int:
    return len(_WHITESPACE_RE.split(text))


def merge_short_paragraphs(
    paragraphs: list[str],
    min_length: int = DEFAULT_MIN_PARAGRAPH_LENGTH,
) -> list[str]:
    """Fold paragraphs shorter than ``min_length`` words into a neighbour.

    One left-to-right pass: a short paragraph joins the previous slot, or the
    next one when it is first. A slot that only becomes long enough after
    absorbing a neighbour is not revisited.
    """
    if not paragraphs:
        return paragraphs

    result = list(paragraphs)
    for index, current in enumerate(result):
        if not current:
            continue
        if _word_count(current) >= min_length:
            continue
        if index > 0:
            result[index - 1] = f"{result[index - 1]} {current}"
            result[index] = ""
        elif index < len(result) - 1:
            result[index + 1] = f"{current} {result[index + 1]}"
            result[index] = ""

    return [paragraph for paragraph in result if paragraph.strip()]


def words_to_final_paragraphs(
    words: Iterable[str],
    sentences_per_paragraph: int = DEFAULT_SENTENCES_PER_PARAGRAPH,
    min_paragraph_length: int = DEFAULT_MIN_PARAGRAPH_LENGTH,
) -> list[str]:
    sentences = words_to_sentences(words)
    grouped = sentences_to_paragraphs(sentences, sentences_per_paragraph)
    return merge_short_paragraphs(grouped, min_paragraph_length)
