"""Map the ``room`` query parameter onto the home/room views."""
from __future__ import annotations

import random
import string
from dataclasses import dataclass
from enum import Enum
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

ROOM_PARAM = "room"
ROOM_PREFIX = "care-"
ROOM_SUFFIX_LENGTH = 6
BASE36_ALPHABET = string.digits + string.ascii_lowercase


class View(str, Enum):
    HOME = "home"
    ROOM = "room"


@dataclass(frozen=True, slots=True)
class Route:
    view: View
    room_id: str | None = None
    share_url: str | None = None

    @property
    def title(self) -> str | None:
        return f"Room: {self.room_id}" if self.room_id else None


def generate_room_id(rng: random.Random | None = None) -> str:
    """Return ``care-`` plus six base-36 characters. Collisions are not checked."""

    chooser = rng or random
    return ROOM_PREFIX + "".join(chooser.choice(BASE36_ALPHABET) for _ in range(ROOM_SUFFIX_LENGTH))


def parse_room(url: str) -> str | None:
    for key, value in parse_qsl(urlsplit(url).query, keep_blank_values=True):
        if key == ROOM_PARAM:
            return value or None
    return None


def build_room_url(current_url: str, room_id: str) -> str:
    """Rewrite the ``room`` parameter of ``current_url``, keeping everything else."""

    parts = urlsplit(current_url)
    query = [(key, value) for key, value in parse_qsl(parts.query, keep_blank_values=True) if key != ROOM_PARAM]
    query.append((ROOM_PARAM, room_id))
    return urlunsplit(parts._replace(query=urlencode(query)))


class RoomRouter:
    """Stateless apart from the view last routed to."""

    def __init__(self) -> None:
        self.current_view = View.HOME

    def route(self, url: str) -> Route:
        room_id = parse_room(url)
        if room_id is None:
            self.current_view = View.HOME
            return Route(view=View.HOME)
        self.current_view = View.ROOM
        return Route(view=View.ROOM, room_id=room_id, share_url=build_room_url(url, room_id))

    def create_room(self, url: str, rng: random.Random | None = None) -> Route:
        """Mint a room id and its share link without leaving the home view."""

        room_id = generate_room_id(rng)
        return Route(view=View.HOME, room_id=room_id, share_url=build_room_url(url, room_id))

    @staticmethod
    def room_url_for_input(url: str, raw_room_id: str | None) -> str | None:
        """URL to navigate to for a manually typed room id, or None when blank."""

        room_id = (raw_room_id or "").strip()
        if not room_id:
            return None
        parts = urlsplit(url)
        return urlunsplit(parts._replace(query=f"{ROOM_PARAM}={quote(room_id, safe='')}"))
