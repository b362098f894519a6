# /tests/test_chunker.py

import pytest

from ingestion.chunker import TextChunker, chunk_text


def _long_text(paragraphs=6, sentences=8):
    return "\n\n".join(
        " ".join(f"Paragraph {p} sentence {s} talks about stacks and queues." for s in range(sentences))
        for p in range(paragraphs)
    )


def test_empty_text_gives_no_chunks():
    assert chunk_text("") == []
    assert chunk_text("   \n\n  ") == []


def test_short_text_is_one_chunk_with_offsets():
    text = "  Binary search halves the interval.  "
    chunks = chunk_text(text, chunk_size=100, overlap=10)
    assert len(chunks) == 1
    assert chunks[0].text == "Binary search halves the interval."
    assert text[chunks[0].start:chunks[0].end] == chunks[0].text
    assert chunks[0].index == 0


def test_long_text_chunks_are_bounded_and_located():
    """
    GIVEN a text several times the chunk size
    WHEN it is chunked
    THEN every chunk fits the size, maps back to the source, and indexes are sequential
    """
    text = _long_text()
    chunker = TextChunker(chunk_size=300, overlap=40)
    chunks = chunker.chunk(text)

    assert len(chunks) > 3
    assert [c.index for c in chunks] == list(range(len(chunks)))
    for chunk in chunks:
        assert len(chunk.text) <= 300
        assert text[chunk.start:chunk.end] == chunk.text


def test_consecutive_chunks_overlap_and_cover_text():
    text = _long_text()
    chunks = TextChunker(chunk_size=300, overlap=40).chunk(text)
    for prev, nxt in zip(chunks, chunks[1:]):
        assert nxt.start > prev.start
        assert nxt.start <= prev.end
    assert chunks[0].start == 0
    assert chunks[-1].end == len(text.rstrip())


def test_prefers_paragraph_boundaries():
    first = "A" * 10 + " " + "word " * 30
    second = "Second paragraph " * 5
    text = first.strip() + "\n\n" + second.strip()
    chunks = TextChunker(chunk_size=200, overlap=0).chunk(text)
    assert chunks[0].text == first.strip()
    assert chunks[1].text.startswith("Second paragraph")


def test_chunks_never_start_mid_word():
    text = " ".join(f"token{i}" for i in range(400))
    chunks = TextChunker(chunk_size=120, overlap=30).chunk(text)
    for chunk in chunks:
        assert chunk.start == 0 or text[chunk.start - 1].isspace()


@pytest.mark.parametrize("size, overlap", [(0, 0), (100, 50), (100, -1)])
def test_invalid_configuration_rejected(size, overlap):
    with pytest.raises(ValueError):
        TextChunker(chunk_size=size, overlap=overlap)
