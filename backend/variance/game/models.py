from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Literal


GamePhase = Literal[
    "waiting",
    "proposing_topics",
    "playing",
    "voting",
    "voting_results",
    "paused",
    "finished",
]


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Player:
    socket_id: str
    nickname: str
    id: str = field(default_factory=new_id)
    room_id: str | None = None
    score: float = 0
    is_host: bool = False
    connected: bool = True
    joined_at_ms: int = field(default_factory=now_ms)
    disconnected_at_ms: int | None = None

    def update_score(self, points: float) -> None:
        self.score += points

    def reset_score(self) -> None:
        self.score = 0

    def disconnect(self) -> None:
        self.connected = False
        self.disconnected_at_ms = now_ms()

    def reconnect(self, socket_id: str) -> None:
        # Identity and score survive; only the transport handle changes.
        self.socket_id = socket_id
        self.connected = True
        self.disconnected_at_ms = None

    def public_state(self) -> dict:
        # Do NOT expose socket_id to other clients.
        return {
            "id": self.id,
            "nickname": self.nickname,
            "score": self.score,
            "isHost": self.is_host,
            "connected": self.connected,
        }


@dataclass
class Topic:
    text: str
    proposed_by: str
    proposed_by_nickname: str


@dataclass
class ProposedWord:
    word: str
    related_topic: str
    proposed_by: str
    proposed_by_nickname: str


@dataclass
class Vote:
    player_id: str
    nickname: str
    score: int


@dataclass
class VotingRound:
    word: ProposedWord
    ends_at_ms: int
    votes: list[Vote] = field(default_factory=list)
    is_complete: bool = False
    # Filled in when the round completes
    average: float | None = None
    variance: float | None = None
    score_delta: float | None = None

    def has_voted(self, player_id: str) -> bool:
        return any(v.player_id == player_id for v in self.votes)


@dataclass
class Room:
    id: str
    players: list[Player] = field(default_factory=list)
    max_players: int = 8
    created_at_ms: int = field(default_factory=now_ms)
    # Caller-side timer state: when the current voting results stop showing
    results_ends_at_ms: int | None = None
