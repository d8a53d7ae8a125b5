"""
Email splitter for chunked classification.

Large job-board digests (20+ listings) exceed what one classification call
handles reliably. Plain text is cut into ~4000 character chunks at paragraph
breaks; chunks are classified independently and merged afterwards.
"""

from dataclasses import dataclass, field
from typing import List

from src.layer1.content_normalizer import detect_email_source

TARGET_CHUNK_SIZE = 4000
MIN_CHUNK_SIZE = 500


@dataclass
class EmailChunk:
    index: int
    content: str

    @property
    def char_count(self) -> int:
        return len(self.content)


@dataclass
class EmailSplitResult:
    source: str
    chunks: List[EmailChunk] = field(default_factory=list)
    total_characters: int = 0

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)


def split_text(plain_text: str, target_size: int = TARGET_CHUNK_SIZE, min_size: int = MIN_CHUNK_SIZE) -> List[str]:
    """
    Split text into chunks near target_size, preferring paragraph breaks.

    The break closest to the target inside a window of [-30%, +20%] wins.
    Remainders shorter than min_size are glued onto the previous chunk.
    """
    chunks: List[str] = []
    start = 0
    length = len(plain_text)

    while start < length:
        end = min(start + target_size, length)

        if end < length:
            search_start = max(start, end - int(target_size * 0.3))
            search_end = min(length, end + int(target_size * 0.2))
            target = start + target_size
            best_break = -1
            position = plain_text.find("\n\n", search_start, search_end)
            while position != -1:
                if position > start + min_size:
                    if best_break == -1 or abs(position - target) < abs(best_break - target):
                        best_break = position
                position = plain_text.find("\n\n", position + 2, search_end)
            if best_break > start:
                end = best_break

        chunk = plain_text[start:end].strip()
        if len(chunk) >= min_size or (chunk and not chunks):
            chunks.append(chunk)
        elif chunk:
            chunks[-1] += "\n\n" + chunk

        start = end
        while start < length and plain_text[start].isspace():
            start += 1

    return chunks


def split_email(plain_text: str, sender: str) -> EmailSplitResult:
    """Split an email body into classification chunks."""
    return EmailSplitResult(
        source=detect_email_source(sender, plain_text),
        chunks=[EmailChunk(index=i, content=c) for i, c in enumerate(split_text(plain_text))],
        total_characters=len(plain_text),
    )


def should_split(plain_text: str, threshold_chars: int) -> bool:
    return len(plain_text) > threshold_chars
