# mirror.py
import asyncio
import sys
from dataclasses import dataclass, field
from typing import List, Protocol

from config import CONFIG
from errors import MirrorError
from models import Card


class Mirror(Protocol):
    async def push(self, card: Card) -> None: ...


class SheetsMirror:
    """Stand-in for the spreadsheet mirror: waits, then records the pushed id."""

    def __init__(self, delay: float = CONFIG.mirror_delay):
        self.delay = delay
        self.pushed: List[str] = []

    async def push(self, card: Card) -> None:
        await asyncio.sleep(self.delay)
        self.pushed.append(card["id"])
        print(f"[cardsnap] synced card {card['id']} to Google Sheets", file=sys.stderr)


@dataclass
class Session:
    """Signed-in mirror target, handed to the controller explicitly."""

    name: str
    email: str
    mirror: Mirror = field(default_factory=SheetsMirror)

    async def push(self, card: Card) -> None:
        # 失敗の種類は問わず MirrorError にまとめる
        try:
            await self.mirror.push(card)
        except MirrorError:
            raise
        except Exception as e:
            raise MirrorError(str(e) or type(e).__name__) from e
