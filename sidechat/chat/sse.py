"""Incremental decoder for ``data:``-prefixed token streams."""

from __future__ import annotations

import codecs
from collections.abc import Iterable, Iterator

__all__ = ["DATA_PREFIX", "DONE_SENTINEL", "TokenStreamDecoder", "iter_tokens"]

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


class TokenStreamDecoder:
    """Turn arbitrarily split byte chunks into tokens.

    Partial UTF-8 sequences and partial lines are carried across ``feed``
    calls, so the output does not depend on where the transport split the
    body. Once ``[DONE]`` is seen, ``done`` is set and later input is ignored.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)("replace")
        self._buffer = ""
        self.done = False

    def feed(self, chunk: bytes) -> list[str]:
        if self.done:
            return []
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        return self._consume(lines)

    def close(self) -> list[str]:
        """Flush the decoder and treat any unterminated line as complete."""

        if self.done:
            return []
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return self._consume([tail] if tail else [])

    def _consume(self, lines: Iterable[str]) -> list[str]:
        tokens: list[str] = []
        for line in lines:
            if line.endswith("\r"):
                line = line[:-1]
            if not line.startswith(DATA_PREFIX):
                continue
            token = line[len(DATA_PREFIX) :]
            if token == DONE_SENTINEL:
                self.done = True
                break
            tokens.append(token)
        return tokens


def iter_tokens(chunks: Iterable[bytes]) -> Iterator[str]:
    """Decode a whole chunked body, stopping at the ``[DONE]`` sentinel."""

    decoder = TokenStreamDecoder()
    for chunk in chunks:
        yield from decoder.feed(chunk)
        if decoder.done:
            return
    yield from decoder.close()
