from __future__ import annotations

import time
from collections import OrderedDict
from typing import Awaitable, Callable

from solders.pubkey import Pubkey

from .constants import SUPPORTED_TOKEN_PROGRAMS


class UnsupportedTokenProgramError(RuntimeError):
    def __init__(self, mint: str, owner: Pubkey | None) -> None:
        owner_label = str(owner) if owner is not None else "missing"
        super().__init__(f"Mint {mint} is owned by unsupported program {owner_label}")
        self.mint = mint
        self.owner = owner


class MintProgramCache:
    """Bounded TTL cache of mint -> owning token program.

    Owned by the engine and passed to the assembler; entries expire so a redeployed
    mint is re-read eventually.
    """

    def __init__(
        self,
        *,
        fetch_owner: Callable[[Pubkey], Awaitable[Pubkey | None]],
        ttl_seconds: float = 3600.0,
        max_entries: int = 512,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch_owner = fetch_owner
        self._ttl_seconds = max(0.0, ttl_seconds)
        self._max_entries = max(1, max_entries)
        self._clock = clock
        self._entries: OrderedDict[str, tuple[float, Pubkey | None]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    async def owner_of(self, mint: str) -> Pubkey | None:
        now = self._clock()
        cached = self._entries.get(mint)
        if cached is not None and cached[0] > now:
            self._entries.move_to_end(mint)
            return cached[1]

        owner = await self._fetch_owner(Pubkey.from_string(mint))
        self._entries[mint] = (now + self._ttl_seconds, owner)
        self._entries.move_to_end(mint)
        while len(self._entries) > self._max_entries:
            self._entries.popitem(last=False)
        return owner

    async def require_token_program(self, mint: str) -> Pubkey:
        owner = await self.owner_of(mint)
        if owner not in SUPPORTED_TOKEN_PROGRAMS:
            raise UnsupportedTokenProgramError(mint, owner)
        return owner
