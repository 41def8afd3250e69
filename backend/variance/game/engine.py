"""Turn-based voting state machine for one room's match.

A Game walks its roster through topic proposal, word proposal and voting.
Every operation either applies completely or returns ``None``/``False`` and
records a reason code on ``last_rejection``; nothing here raises for a bad
move. The engine never schedules work on its own: voting deadlines are
exposed through ``is_voting_expired`` and closed by whoever polls it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from ..config import Config
from .models import GamePhase, Player, ProposedWord, Topic, Vote, VotingRound, new_id, now_ms


logger = logging.getLogger(__name__)

MIN_PLAYERS = 2
MIN_VOTE_SCORE = 1
MAX_VOTE_SCORE = 10
# Minimum-variance mode awards max(0, CONSENSUS_CEILING - variance)
CONSENSUS_CEILING = 10

REJECTION_MESSAGES = {
    "game_in_progress": "The game has already started",
    "already_in_game": "Player is already in this game",
    "player_not_in_game": "Player is not part of this game",
    "not_enough_players": "Need at least 2 players to start",
    "wrong_phase": "That action is not allowed right now",
    "not_your_turn": "It is not your turn",
    "topic_already_proposed": "You have already proposed a topic",
    "topics_pending": "Not every player has proposed a topic yet",
    "unknown_topic": "That topic was not proposed in this game",
    "voting_in_progress": "A word is already being voted on",
    "no_active_vote": "There is no word to vote on",
    "cannot_vote_own_word": "You cannot vote on your own word",
    "already_voted": "You have already voted on this word",
    "invalid_score": "Score must be a whole number from 1 to 10",
    "already_paused": "The game is already paused",
    "not_paused": "The game is not paused",
    "game_finished": "The game has finished",
}


def rejection_message(code: str | None) -> str:
    return REJECTION_MESSAGES.get(code or "", "Action rejected")


def voting_round_state(voting_round: VotingRound) -> dict:
    word = voting_round.word
    return {
        "word": word.word,
        "relatedTopic": word.related_topic,
        "proposedBy": word.proposed_by,
        "proposedByNickname": word.proposed_by_nickname,
        "votes": [
            {"playerId": v.player_id, "nickname": v.nickname, "score": v.score}
            for v in voting_round.votes
        ],
        "endsAtMs": voting_round.ends_at_ms,
        "isComplete": voting_round.is_complete,
        "average": voting_round.average,
        "variance": voting_round.variance,
        "scoreDelta": voting_round.score_delta,
    }


@dataclass
class Game:
    room_id: str
    host_id: str
    max_rounds: int = 1
    minimum_variance: bool = False
    vote_duration_sec: int = field(default_factory=lambda: Config.VOTE_DURATION_SEC)
    clock: Callable[[], int] = field(default=now_ms, repr=False)

    id: str = field(default_factory=new_id)
    phase: GamePhase = "waiting"
    players: list[Player] = field(default_factory=list)
    topics: list[Topic] = field(default_factory=list)
    current_player_index: int = 0
    current_player_turn: str | None = None
    current_voting_round: VotingRound | None = None
    completed_rounds: list[VotingRound] = field(default_factory=list)
    round: int = 0
    last_rejection: str | None = None
    paused_from: GamePhase | None = None
    paused_at_ms: int | None = None

    # -- helpers -----------------------------------------------------------

    def _reject(self, code: str) -> None:
        self.last_rejection = code
        logger.debug("[rejected] game=%s phase=%s reason=%s", self.id, self.phase, code)
        return None

    def _find_player(self, player_id: str) -> Player | None:
        for p in self.players:
            if p.id == player_id:
                return p
        return None

    def _sync_turn(self) -> None:
        if not self.players:
            self.current_player_index = 0
            self.current_player_turn = None
            return
        self.current_player_index %= len(self.players)
        self.current_player_turn = self.players[self.current_player_index].nickname

    def _advance_turn(self) -> None:
        if self.players:
            self.current_player_index = (self.current_player_index + 1) % len(self.players)
        self._sync_turn()

    def _proposed_this_round(self) -> set[str]:
        """Ids of players still in the game who already had a word turn this round."""
        on_roster = {p.id for p in self.players}
        return {r.word.proposed_by for r in self.completed_rounds} & on_roster

    def _holds_turn(self, player: Player) -> bool:
        return player.nickname == self.current_player_turn

    def _voting_settled(self) -> bool:
        """True once nobody eligible is left to vote on the current word."""
        voting_round = self.current_voting_round
        if voting_round is None:
            return False
        proposer_id = voting_round.word.proposed_by
        if self._find_player(proposer_id) is None:
            return True
        voted = {v.player_id for v in voting_round.votes}
        return all(p.id in voted for p in self.players if p.id != proposer_id)

    def _maybe_complete_voting(self) -> None:
        if self.phase == "voting" and self._voting_settled():
            self.complete_voting_round()

    # -- roster ------------------------------------------------------------

    def add_player(self, player: Player) -> bool:
        if self.phase != "waiting":
            self._reject("game_in_progress")
            return False
        if self._find_player(player.id) is not None:
            self._reject("already_in_game")
            return False
        self.players.append(player)
        player.room_id = self.room_id
        self._sync_turn()
        return True

    def remove_player(self, player_id: str) -> Player | None:
        idx = next((i for i, p in enumerate(self.players) if p.id == player_id), None)
        if idx is None:
            return self._reject("player_not_in_game")

        player = self.players.pop(idx)
        if idx < self.current_player_index:
            self.current_player_index -= 1
        self.topics = [t for t in self.topics if t.proposed_by != player_id]

        if self.host_id == player_id and self.players:
            self.host_id = self.players[0].id
            self.players[0].is_host = True

        self._sync_turn()
        logger.info(
            "[player-removed] game=%s player=%s remaining=%d phase=%s",
            self.id, player.nickname, len(self.players), self.phase,
        )

        if self.phase not in ("waiting", "finished") and len(self.players) < MIN_PLAYERS:
            self.end_game()
        else:
            self._maybe_complete_voting()
        return player

    def is_host(self, player_id: str) -> bool:
        return self.host_id == player_id

    def can_start(self) -> bool:
        return self.phase == "waiting" and len(self.players) >= MIN_PLAYERS

    # -- flow --------------------------------------------------------------

    def start_game(self) -> bool:
        if self.phase != "waiting":
            self._reject("game_in_progress")
            return False
        if len(self.players) < MIN_PLAYERS:
            self._reject("not_enough_players")
            return False

        self.phase = "proposing_topics"
        self.round = 1
        self.topics = []
        self.completed_rounds = []
        self.current_voting_round = None
        for p in self.players:
            p.reset_score()
        self.current_player_index = 0
        self._sync_turn()
        logger.info(
            "[game-start] game=%s room=%s players=%d max_rounds=%d minimum_variance=%s",
            self.id, self.room_id, len(self.players), self.max_rounds, self.minimum_variance,
        )
        return True

    def propose_topic(self, player_id: str, text: str) -> Topic | None:
        if self.phase != "proposing_topics":
            return self._reject("wrong_phase")
        player = self._find_player(player_id)
        if player is None:
            return self._reject("player_not_in_game")
        if any(t.proposed_by == player.id for t in self.topics):
            return self._reject("topic_already_proposed")
        if not self._holds_turn(player):
            return self._reject("not_your_turn")

        topic = Topic(text=text, proposed_by=player.id, proposed_by_nickname=player.nickname)
        self.topics.append(topic)
        self._advance_turn()
        return topic

    def all_topics_proposed(self) -> bool:
        return (
            self.phase == "proposing_topics"
            and bool(self.players)
            and len(self.topics) == len(self.players)
        )

    def start_word_phase(self) -> bool:
        if not self.all_topics_proposed():
            self._reject("topics_pending")
            return False
        self.phase = "playing"
        # Word turns always restart from the first player.
        self.current_player_index = 0
        self._sync_turn()
        logger.info("[word-phase] game=%s topics=%d", self.id, len(self.topics))
        return True

    def propose_word(self, player_id: str, word: str, related_topic: str) -> ProposedWord | None:
        if self.phase == "voting":
            return self._reject("voting_in_progress")
        if self.phase != "playing":
            return self._reject("wrong_phase")
        player = self._find_player(player_id)
        if player is None:
            return self._reject("player_not_in_game")
        if not self._holds_turn(player):
            return self._reject("not_your_turn")
        if not any(t.text == related_topic for t in self.topics):
            return self._reject("unknown_topic")

        proposed = ProposedWord(
            word=word,
            related_topic=related_topic,
            proposed_by=player.id,
            proposed_by_nickname=player.nickname,
        )
        self.current_voting_round = VotingRound(
            word=proposed,
            ends_at_ms=self.clock() + self.vote_duration_sec * 1000,
        )
        self.phase = "voting"
        logger.info("[word-proposed] game=%s by=%s topic=%r", self.id, player.nickname, related_topic)
        return proposed

    def vote_on_word(self, player_id: str, score: Any) -> Vote | None:
        voting_round = self.current_voting_round
        if self.phase != "voting" or voting_round is None or voting_round.is_complete:
            return self._reject("no_active_vote")
        player = self._find_player(player_id)
        if player is None:
            return self._reject("player_not_in_game")
        if player.id == voting_round.word.proposed_by:
            return self._reject("cannot_vote_own_word")
        if voting_round.has_voted(player.id):
            return self._reject("already_voted")
        if isinstance(score, bool) or not isinstance(score, int):
            return self._reject("invalid_score")
        if not MIN_VOTE_SCORE <= score <= MAX_VOTE_SCORE:
            return self._reject("invalid_score")

        vote = Vote(player_id=player.id, nickname=player.nickname, score=score)
        voting_round.votes.append(vote)
        self._maybe_complete_voting()
        return vote

    def complete_voting_round(self) -> VotingRound | None:
        voting_round = self.current_voting_round
        if voting_round is None:
            return None

        voting_round.is_complete = True
        self.phase = "voting_results"

        scores = [v.score for v in voting_round.votes]
        average = sum(scores) / len(scores) if scores else 0.0
        # Sum of squared deviations, intentionally not divided by the vote count.
        variance = float(sum((s - average) ** 2 for s in scores))
        if self.minimum_variance:
            delta = max(0.0, CONSENSUS_CEILING - variance)
        else:
            delta = variance

        proposer = self._find_player(voting_round.word.proposed_by)
        if proposer is not None:
            proposer.update_score(delta)

        voting_round.average = average
        voting_round.variance = variance
        voting_round.score_delta = delta
        self.completed_rounds.append(voting_round)
        self.current_voting_round = None
        logger.info(
            "[voting-complete] game=%s word=%r votes=%d average=%.2f variance=%.2f delta=%.2f",
            self.id, voting_round.word.word, len(scores), average, variance, delta,
        )
        return voting_round

    def force_complete_voting(self) -> VotingRound | None:
        voting_round = self.current_voting_round
        if self.phase != "voting" or voting_round is None or voting_round.is_complete:
            return None
        return self.complete_voting_round()

    def is_voting_expired(self, now: int | None = None) -> bool:
        voting_round = self.current_voting_round
        if self.phase != "voting" or voting_round is None or voting_round.is_complete:
            return False
        current = self.clock() if now is None else now
        return current > voting_round.ends_at_ms

    def next_player_word_turn(self) -> bool:
        if self.phase != "voting_results":
            self._reject("wrong_phase")
            return False

        proposed = self._proposed_this_round()
        if len(proposed) >= len(self.players):
            if self.round >= self.max_rounds:
                self.end_game()
                return True
            self.round += 1
            self.completed_rounds = []
            self.current_player_index = 0
            self._sync_turn()
            logger.info("[next-round] game=%s round=%d/%d", self.id, self.round, self.max_rounds)
        else:
            # Scan from the pointer itself: it already moved on if the proposer left.
            count = len(self.players)
            self.current_player_index = next(
                (self.current_player_index + step) % count
                for step in range(count)
                if self.players[(self.current_player_index + step) % count].id not in proposed
            )
            self._sync_turn()

        self.phase = "playing"
        return True

    def end_game(self) -> None:
        """Finish the game and rank the players.

        A word still being voted on is filed under ``completed_rounds``
        unscored, with ``is_complete`` left False.
        """
        if self.current_voting_round is not None:
            self.completed_rounds.append(self.current_voting_round)
        self.phase = "finished"
        self.current_voting_round = None
        self.paused_from = None
        self.paused_at_ms = None
        # Lower is better when rewarding consensus.
        self.players.sort(key=lambda p: p.score, reverse=not self.minimum_variance)
        winner = self.players[0].nickname if self.players else None
        logger.info("[game-end] game=%s round=%d winner=%s", self.id, self.round, winner)

    def get_winner(self) -> Player | None:
        if self.phase != "finished" or not self.players:
            return None
        return self.players[0]

    def pause_game(self) -> bool:
        if self.phase == "finished":
            self._reject("game_finished")
            return False
        if self.phase == "paused":
            self._reject("already_paused")
            return False
        self.paused_from = self.phase
        self.paused_at_ms = self.clock()
        self.phase = "paused"
        return True

    def resume_game(self) -> bool:
        if self.phase != "paused":
            self._reject("not_paused")
            return False

        self.phase = self.paused_from or "playing"
        voting_round = self.current_voting_round
        if voting_round is not None and self.paused_at_ms is not None:
            # The vote timer does not run while paused.
            voting_round.ends_at_ms += max(0, self.clock() - self.paused_at_ms)
        self.paused_from = None
        self.paused_at_ms = None
        self._maybe_complete_voting()
        return True

    # -- snapshot ----------------------------------------------------------

    def get_game_state(self) -> dict:
        return {
            "id": self.id,
            "roomId": self.room_id,
            "phase": self.phase,
            "players": [p.public_state() for p in self.players],
            "topics": [
                {"text": t.text, "proposedBy": t.proposed_by, "proposedByNickname": t.proposed_by_nickname}
                for t in self.topics
            ],
            "currentPlayerIndex": self.current_player_index,
            "currentPlayerTurn": self.current_player_turn,
            "currentVotingRound": (
                voting_round_state(self.current_voting_round) if self.current_voting_round else None
            ),
            "completedRounds": [voting_round_state(r) for r in self.completed_rounds],
            "round": self.round,
            "maxRounds": self.max_rounds,
            "minimumVariance": self.minimum_variance,
            "hostId": self.host_id,
        }
