"""
Stub text engine for testing pipeline plumbing.
Decodes bytes as UTF-8 so tests can feed bid text directly.
"""

from app.engines.base import TextEngine


class StubEngine(TextEngine):
    """Fake adapter that treats the payload as plain text."""

    engine_name = "stub"
    file_kinds = frozenset({"txt", "stub"})

    async def extract_text(self, data: bytes) -> str:
        return data.decode("utf-8", errors="replace")
