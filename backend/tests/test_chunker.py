"""
Tests for paragraph-based chunking.
"""
from apps.indexing.chunker import (
    TextChunk,
    chunk_text,
    estimate_tokens,
    overlap_tail,
    split_paragraphs,
)


def paragraph(word: str, words: int) -> str:
    return ' '.join([word] * words)


# ============================================================================
# Helper Tests
# ============================================================================

class TestHelpers:
    """Tests for token estimation and paragraph splitting."""

    def test_estimate_tokens_rounds_up(self):
        assert estimate_tokens('') == 0
        assert estimate_tokens('abcd') == 1
        assert estimate_tokens('abcde') == 2

    def test_split_paragraphs(self):
        """Blank lines (even with whitespace) separate paragraphs."""
        text = 'First line\nstill first\n\nSecond\n   \nThird\r\n\r\nFourth'

        assert split_paragraphs(text) == ['First line\nstill first', 'Second', 'Third', 'Fourth']

    def test_overlap_tail_whole_words(self):
        """Only whole trailing words that fit are kept."""
        assert overlap_tail('alpha beta gamma delta', 11) == 'gamma delta'
        assert overlap_tail('alpha beta gamma delta', 4) == ''
        assert overlap_tail('alpha beta', 0) == ''

    def test_chunk_properties(self):
        chunk = TextChunk(index=0, text='x' * 10)

        assert chunk.char_count == 10
        assert chunk.estimated_tokens == 3


# ============================================================================
# chunk_text Tests
# ============================================================================

class TestChunkText:
    """Tests for chunk_text."""

    def test_empty_input(self):
        assert chunk_text('') == []
        assert chunk_text('   \n\n  ') == []

    def test_short_text_single_chunk(self):
        """Text under the budget stays in one chunk."""
        chunks = chunk_text('One paragraph.\n\nAnother paragraph.')

        assert len(chunks) == 1
        assert chunks[0].index == 0
        assert chunks[0].text == 'One paragraph.\n\nAnother paragraph.'

    def test_splits_when_over_budget(self):
        """Paragraphs roll over into a new chunk once the budget is exceeded."""
        text = '\n\n'.join(paragraph(w, 30) for w in ['alpha', 'bravo', 'charlie', 'delta'])

        chunks = chunk_text(text, max_tokens=100, overlap_tokens=0)

        assert len(chunks) > 1
        assert [c.index for c in chunks] == list(range(len(chunks)))
        for chunk in chunks:
            assert chunk.estimated_tokens <= 100

    def test_overlap_carries_tail_words(self):
        """Each new chunk starts with words from the end of the previous one."""
        text = '\n\n'.join(paragraph(w, 30) for w in ['alpha', 'bravo', 'charlie'])

        chunks = chunk_text(text, max_tokens=100, overlap_tokens=5)

        assert len(chunks) >= 2
        previous_last_word = chunks[0].text.split()[-1]
        assert chunks[1].text.startswith(previous_last_word)

    def test_overlap_never_exceeds_budget(self):
        """The seed is dropped when it would push the chunk over budget."""
        text = '\n\n'.join(paragraph(w, 78) for w in ['alpha', 'bravo'])

        chunks = chunk_text(text, max_tokens=100, overlap_tokens=20)

        assert len(chunks) == 2
        assert chunks[1].text == paragraph('bravo', 78)

    def test_oversized_paragraph_kept_whole(self):
        """A single paragraph larger than the budget is not split."""
        big = paragraph('word', 500)

        chunks = chunk_text(big, max_tokens=100)

        assert len(chunks) == 1
        assert chunks[0].text == big

    def test_deterministic(self):
        text = '\n\n'.join(paragraph(w, 40) for w in ['a', 'b', 'c', 'd', 'e'])

        assert chunk_text(text, max_tokens=50) == chunk_text(text, max_tokens=50)

    def test_chunks_minus_overlap_reconstruct_input(self):
        """Dropping each seeded overlap prefix leaves every paragraph exactly once, in order."""
        paragraphs = [
            ' '.join(f"p{i}w{j}" for j in range(size))
            for i, size in enumerate([12, 3, 30, 7, 18, 1, 25, 9, 60, 4])
        ]
        text = '\n\n'.join(paragraphs)
        max_tokens, overlap_tokens = 40, 4

        chunks = chunk_text(text, max_tokens=max_tokens, overlap_tokens=overlap_tokens)

        rebuilt = chunks[0].text.split('\n\n')
        for previous, chunk in zip(chunks, chunks[1:]):
            body = chunk.text
            seed = overlap_tail(previous.text, overlap_tokens * 4)
            if seed and body.startswith(seed + '\n\n'):
                body = body[len(seed) + 2:]
            rebuilt.extend(body.split('\n\n'))

        assert len(chunks) > 2
        assert rebuilt == split_paragraphs(text)
