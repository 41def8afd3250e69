from __future__ import annotations

import logging
import uuid
from threading import RLock

from ..config import Config
from .engine import Game, rejection_message
from .models import Player, ProposedWord, Room, Topic, Vote, now_ms


logger = logging.getLogger(__name__)

Event = tuple[str, dict]


class LobbyError(Exception):
    """A request that refers to a room, player or game we do not know about,
    or that the caller is not allowed to make."""

    MESSAGES = {
        "room_not_found": "Room not found",
        "room_full": "Room is full",
        "nickname_taken": "Nickname already taken in this room",
        "player_not_found": "Player not found",
        "not_in_room": "Player not in a room",
        "game_not_found": "Game not found",
        "game_in_progress": "A game is already running in this room",
        "only_host": "Only the host can do that",
        "not_enough_players": "Need at least 2 players to start",
    }

    def __init__(self, code: str):
        self.code = code
        self.message = self.MESSAGES.get(code, code)
        super().__init__(self.message)


_lock = RLock()
_rooms: dict[str, Room] = {}
_players: dict[str, Player] = {}  # socket id -> player
_games: dict[str, Game] = {}  # room id -> game


def clear_all() -> None:
    with _lock:
        _rooms.clear()
        _players.clear()
        _games.clear()


# -- lookups -----------------------------------------------------------------


def get_room(room_id: str) -> Room | None:
    with _lock:
        return _rooms.get(room_id)


def get_player(socket_id: str) -> Player | None:
    with _lock:
        return _players.get(socket_id)


def get_game(room_id: str) -> Game | None:
    with _lock:
        return _games.get(room_id)


def list_rooms() -> list[Room]:
    with _lock:
        return list(_rooms.values())


def get_room_players(room_id: str) -> list[Player]:
    with _lock:
        room = _rooms.get(room_id)
        return list(room.players) if room else []


def room_list() -> list[dict]:
    with _lock:
        return [
            {
                "id": room.id,
                "playerCount": len(room.players),
                "maxPlayers": room.max_players,
                "hasGame": room.id in _games,
            }
            for room in _rooms.values()
        ]


def room_public_state(room: Room) -> dict:
    with _lock:
        host = next((p for p in room.players if p.is_host), None)
        return {
            "id": room.id,
            "hostId": host.id if host else None,
            "maxPlayers": room.max_players,
            "createdAtMs": room.created_at_ms,
            "players": [p.public_state() for p in room.players],
            "hasGame": room.id in _games,
        }


def _require_player(socket_id: str) -> Player:
    player = _players.get(socket_id)
    if player is None:
        raise LobbyError("player_not_found")
    if not player.room_id:
        raise LobbyError("not_in_room")
    return player


def _require_game(socket_id: str) -> tuple[Player, Game]:
    player = _require_player(socket_id)
    game = _games.get(player.room_id)
    if game is None:
        raise LobbyError("game_not_found")
    return player, game


# -- membership --------------------------------------------------------------


def create_room(socket_id: str, nickname: str) -> tuple[Room, Player]:
    with _lock:
        room_id = uuid.uuid4().hex
        while room_id in _rooms:
            room_id = uuid.uuid4().hex

        player = Player(socket_id=socket_id, nickname=nickname, room_id=room_id, is_host=True)
        room = Room(id=room_id, players=[player], max_players=Config.MAX_PLAYERS)
        _rooms[room_id] = room
        _players[socket_id] = player
        logger.info("[room-create] room=%s host=%s", room_id, nickname)
        return room, player


def join_room(socket_id: str, room_id: str, nickname: str) -> tuple[Room, Player]:
    with _lock:
        room = _rooms.get(room_id)
        if room is None:
            raise LobbyError("room_not_found")
        if len(room.players) >= room.max_players:
            raise LobbyError("room_full")
        if any(p.nickname == nickname for p in room.players):
            raise LobbyError("nickname_taken")
        game = _games.get(room_id)
        if game is not None and game.phase != "finished":
            raise LobbyError("game_in_progress")

        player = Player(socket_id=socket_id, nickname=nickname, room_id=room_id)
        room.players.append(player)
        _players[socket_id] = player
        logger.info("[room-join] room=%s player=%s size=%d", room_id, nickname, len(room.players))
        return room, player


def leave_room(socket_id: str) -> tuple[Room, Player] | None:
    with _lock:
        player = _players.get(socket_id)
        if player is None or not player.room_id:
            return None
        room = _rooms.get(player.room_id)
        if room is None:
            return None

        room.players = [p for p in room.players if p.id != player.id]
        new_host = None
        if player.is_host and room.players:
            player.is_host = False
            new_host = room.players[0]
            new_host.is_host = True

        game = _games.get(room.id)
        if game is not None:
            if new_host is not None:
                game.host_id = new_host.id
            game.remove_player(player.id)
            if game.all_topics_proposed():
                game.start_word_phase()

        if not room.players:
            del _rooms[room.id]
            _games.pop(room.id, None)
            logger.info("[room-delete] room=%s empty", room.id)

        del _players[socket_id]
        logger.info("[room-leave] room=%s player=%s", room.id, player.nickname)
        return room, player


def mark_disconnected(socket_id: str) -> Player | None:
    with _lock:
        player = _players.get(socket_id)
        if player is None:
            return None
        player.disconnect()
        logger.info("[disconnect] room=%s player=%s", player.room_id, player.nickname)
        return player


def reconnect_player(socket_id: str, room_id: str, player_id: str) -> tuple[Room, Player, Game | None]:
    with _lock:
        room = _rooms.get(room_id)
        if room is None:
            raise LobbyError("room_not_found")
        player = next((p for p in room.players if p.id == player_id), None)
        if player is None:
            raise LobbyError("player_not_found")

        _players.pop(player.socket_id, None)
        player.reconnect(socket_id)
        _players[socket_id] = player
        logger.info("[reconnect] room=%s player=%s", room_id, player.nickname)
        return room, player, _games.get(room_id)


# -- game flow ---------------------------------------------------------------


def start_game(socket_id: str, max_rounds: int | None = None, minimum_variance: bool = False) -> Game:
    with _lock:
        player = _require_player(socket_id)
        if not player.is_host:
            raise LobbyError("only_host")
        room = _rooms.get(player.room_id)
        if room is None:
            raise LobbyError("room_not_found")
        if len(room.players) < 2:
            raise LobbyError("not_enough_players")
        previous = _games.get(room.id)
        if previous is not None and previous.phase != "finished":
            raise LobbyError("game_in_progress")

        game = Game(
            room_id=room.id,
            host_id=player.id,
            max_rounds=max_rounds or Config.DEFAULT_MAX_ROUNDS,
            minimum_variance=bool(minimum_variance),
        )
        for p in room.players:
            game.add_player(p)
        if not game.start_game():
            raise LobbyError(game.last_rejection or "not_enough_players")

        room.results_ends_at_ms = None
        _games[room.id] = game
        return game


def propose_topic(socket_id: str, text: str) -> tuple[Game, Topic | None]:
    with _lock:
        player, game = _require_game(socket_id)
        topic = game.propose_topic(player.id, text)
        if topic is not None and game.all_topics_proposed():
            game.start_word_phase()
        return game, topic


def propose_word(socket_id: str, word: str, related_topic: str) -> tuple[Game, ProposedWord | None]:
    with _lock:
        player, game = _require_game(socket_id)
        return game, game.propose_word(player.id, word, related_topic)


def vote_on_word(socket_id: str, score) -> tuple[Game, Vote | None]:
    with _lock:
        player, game = _require_game(socket_id)
        vote = game.vote_on_word(player.id, score)
        if vote is not None and game.phase == "voting_results":
            _show_results(game)
        return game, vote


def _show_results(game: Game) -> None:
    room = _rooms.get(game.room_id)
    if room is not None:
        room.results_ends_at_ms = now_ms() + Config.RESULTS_DURATION_SEC * 1000


def _require_host_game(socket_id: str) -> Game:
    player, game = _require_game(socket_id)
    if not game.is_host(player.id):
        raise LobbyError("only_host")
    return game


def pause_game(socket_id: str) -> tuple[Game, bool]:
    with _lock:
        game = _require_host_game(socket_id)
        return game, game.pause_game()


def resume_game(socket_id: str) -> tuple[Game, bool]:
    with _lock:
        game = _require_host_game(socket_id)
        return game, game.resume_game()


def end_game(socket_id: str) -> Game:
    with _lock:
        game = _require_host_game(socket_id)
        game.end_game()
        room = _rooms.get(game.room_id)
        if room is not None:
            room.results_ends_at_ms = None
        return game


def get_game_state(socket_id: str) -> dict:
    with _lock:
        _, game = _require_game(socket_id)
        return game.get_game_state()


def failure(game: Game) -> dict:
    return {"ok": False, "error": game.last_rejection, "message": rejection_message(game.last_rejection)}


# -- timers ------------------------------------------------------------------


def phase_change_events(game: Game, before: str) -> list[Event]:
    """Events implied by a phase change that happened as a side effect,
    e.g. a player leaving mid-vote."""
    if game.phase == before:
        return []
    payload = {"gameState": game.get_game_state()}
    if game.phase == "finished":
        return [("game:ended", payload)]
    if before == "voting" and game.phase == "voting_results":
        return [("game:voting_completed", payload)]
    if before == "proposing_topics" and game.phase == "playing":
        return [("game:all_topics_proposed", payload)]
    return []


def advance_timers(room_id: str, now: int | None = None) -> list[Event]:
    """Apply every deadline that has passed for one room.

    Returns the events the caller should broadcast to the room, in order.
    """
    now = now_ms() if now is None else now
    events: list[Event] = []
    with _lock:
        room = _rooms.get(room_id)
        if room is None:
            return events

        game = _games.get(room_id)
        before = game.phase if game is not None else None

        grace_ms = Config.RECONNECT_GRACE_SEC * 1000
        stale = [
            p for p in room.players
            if not p.connected and p.disconnected_at_ms is not None and now - p.disconnected_at_ms >= grace_ms
        ]
        for p in stale:
            if leave_room(p.socket_id) is not None:
                logger.info("[reconnect-expired] room=%s player=%s", room_id, p.nickname)
                events.append(("room:player_left", {"player": p.public_state(), "room": room_public_state(room)}))
        if room_id not in _rooms or game is None:
            return events
        events.extend(phase_change_events(game, before))

        if game.is_voting_expired(now) and game.force_complete_voting() is not None:
            logger.info("[vote-timeout] room=%s game=%s", room_id, game.id)
            events.append(("game:voting_completed", {"gameState": game.get_game_state()}))

        if game.phase != "voting_results":
            room.results_ends_at_ms = None
            return events

        if room.results_ends_at_ms is None:
            room.results_ends_at_ms = now + Config.RESULTS_DURATION_SEC * 1000
        elif now >= room.results_ends_at_ms:
            room.results_ends_at_ms = None
            game.next_player_word_turn()
            if game.phase == "finished":
                events.append(("game:ended", {"gameState": game.get_game_state()}))
            else:
                events.append(("game:next_turn", {"gameState": game.get_game_state()}))

        return events
