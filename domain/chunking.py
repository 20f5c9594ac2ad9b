from typing import List


def chunk_text(text: str, size: int = 512, overlap: int = 64) -> List[str]:
    """Split ``text`` into windows of ``size`` words, each starting
    ``size - overlap`` words after the previous one.

    For N words this yields ceil(N / (size - overlap)) chunks whose word
    ranges cover [0, N) without gaps.
    """
    if size <= 0 or not 0 <= overlap < size:
        raise ValueError("chunk size must be positive and overlap in [0, size)")
    words = text.split()
    step = size - overlap
    return [" ".join(words[i:i + size]) for i in range(0, len(words), step)]
