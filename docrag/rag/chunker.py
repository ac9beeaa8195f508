import re
from typing import Iterator, NamedTuple, Optional
from langchain_text_splitters import RecursiveCharacterTextSplitter

# Paragraphs first, then lines and sentences, then words, then raw characters.
SEPARATORS = ["\n\n", "\n", ". ", "? ", "! ", " ", ""]

_BLANK_LINES = re.compile(r"\n{3,}")


class Chunk(NamedTuple):
    text: str
    index: int
    start: int  # offset into the normalized text

    @property
    def metadata(self) -> dict:
        return {"chunk_index": self.index, "start_index": self.start, "length": len(self.text)}


def normalize_text(text: Optional[str]) -> str:
    """
    Normalize extracted text before chunking: unify line endings, drop NUL
    bytes, collapse long runs of blank lines and strip outer whitespace.
    """
    if not text:
        return ""
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\x00", "")
    text = _BLANK_LINES.sub("\n\n", text)
    return text.strip()


class ChunkSequence:
    """
    Lazy, restartable sequence of chunks over one text.
    Splitting happens on each iteration, never at construction.
    """

    def __init__(self, text: str, chunk_size: int = 1000, chunk_overlap: int = 200):
        if chunk_overlap >= chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must be smaller than chunk_size ({chunk_size})"
            )
        self.text = text
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

    def _splitter(self) -> RecursiveCharacterTextSplitter:
        # Whitespace is kept and separators stay on the preceding piece so the
        # chunks laid out by start offset rebuild the text exactly.
        return RecursiveCharacterTextSplitter(
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            separators=SEPARATORS,
            keep_separator="end",
            strip_whitespace=False,
            add_start_index=True,
        )

    def __iter__(self) -> Iterator[Chunk]:
        if not self.text:
            return
        docs = self._splitter().create_documents([self.text])
        for i, doc in enumerate(docs):
            yield Chunk(doc.page_content, i, doc.metadata["start_index"])


def chunk_text(
        text: str,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
) -> ChunkSequence:
    """
    Split normalized text into overlapping chunks.
    Empty text yields no chunks; text no longer than chunk_size yields one.
    """
    return ChunkSequence(text, chunk_size=chunk_size, chunk_overlap=chunk_overlap)
