"""Deterministic stand-in for the bcrypt hasher."""

from __future__ import annotations


class FakeHasher:
    """Produces a different "salted" hash on every call, like bcrypt does.

    Hashes are cheap and predictable: ``$fake$<n>$<password>``.
    """

    def __init__(self) -> None:
        self.calls = 0

    def hash(self, password: str) -> str:
        self.calls += 1
        return f"$fake${self.calls}${password}"
