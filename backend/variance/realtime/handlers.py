from __future__ import annotations

import functools
import logging
from typing import Any

from flask import current_app, request
from flask_socketio import SocketIO, emit, join_room, leave_room

from ..game import service
from ..game.engine import voting_round_state


logger = logging.getLogger(__name__)

_room_tasks: set[str] = set()


def _validate_nickname(name: str) -> bool:
    n = (name or "").strip()
    if not n:
        return False
    if len(n) > 16:
        return False
    # Avoid obvious HTML/script injection.
    if "<" in n or ">" in n:
        return False
    # No control characters.
    for ch in n:
        if ord(ch) < 32:
            return False
    return True


def _clean_text(raw: Any, max_length: int) -> str | None:
    """Trimmed text, or None when empty or longer than max_length."""
    if not isinstance(raw, str):
        return None
    text = raw.strip()
    if not text or len(text) > max_length:
        return None
    return text


def _parse_int(raw: Any) -> int | None:
    # str() first so that 7.5 and True are rejected instead of truncated.
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return None


def _parse_flag(raw: Any) -> bool | None:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str):
        return {"true": True, "false": False}.get(raw.strip().lower())
    return None


def _error(event: str, code: str, message: str) -> dict:
    emit(event, {"error": code, "message": message})
    return {"ok": False, "error": code, "message": message}


def _rejected(game) -> dict:
    result = service.failure(game)
    emit("game:error", {"error": result["error"], "message": result["message"]})
    return result


def _reports(error_event: str):
    """Turn LobbyError into an error emit plus a failed ack."""

    def decorator(fn):
        @functools.wraps(fn)
        def wrapper(*args, **kwargs):
            try:
                return fn(*args, **kwargs)
            except service.LobbyError as exc:
                logger.info("[lobby-error] sid=%s handler=%s error=%s", request.sid, fn.__name__, exc.code)
                return _error(error_event, exc.code, exc.message)

        return wrapper

    return decorator


def register_socketio_handlers(socketio: SocketIO) -> None:
    def _broadcast(room_id: str, events: list[service.Event]) -> None:
        for name, payload in events:
            socketio.emit(name, payload, to=room_id)

    def _ensure_room_task(room_id: str) -> None:
        if current_app.config.get("TESTING"):
            return
        if room_id in _room_tasks:
            return
        _room_tasks.add(room_id)

        def _runner() -> None:
            while service.get_room(room_id) is not None:
                try:
                    events = service.advance_timers(room_id)
                except Exception:
                    logger.exception("[timer-error] room=%s", room_id)
                    events = []
                _broadcast(room_id, events)
                socketio.sleep(0.25)

            _room_tasks.discard(room_id)

        socketio.start_background_task(_runner)

    def _leave_current_room() -> None:
        player = service.get_player(request.sid)
        game = service.get_game(player.room_id) if player and player.room_id else None
        before = game.phase if game else None

        result = service.leave_room(request.sid)
        if result is None:
            return
        room, player = result
        leave_room(room.id)
        socketio.emit(
            "room:player_left",
            {"player": player.public_state(), "room": service.room_public_state(room)},
            to=room.id,
        )
        if game is not None and service.get_room(room.id) is not None:
            _broadcast(room.id, service.phase_change_events(game, before))
        logger.info("[leave] room=%s player=%s", room.id, player.nickname)

    # -- lobby -------------------------------------------------------------

    @socketio.on("room:create")
    def room_create(data):
        payload = data or {}
        nickname = str(payload.get("nickname", "")).strip()
        if not _validate_nickname(nickname):
            return _error("room:error", "invalid_nickname", "Nickname must be 1-16 plain characters")

        if service.get_player(request.sid) is not None:
            _leave_current_room()

        room, player = service.create_room(request.sid, nickname)
        join_room(room.id)
        _ensure_room_task(room.id)
        return {"ok": True, "room": service.room_public_state(room), "player": player.public_state()}

    @socketio.on("room:join")
    @_reports("room:error")
    def room_join(data):
        payload = data or {}
        room_id = str(payload.get("roomId", "")).strip()
        nickname = str(payload.get("nickname", "")).strip()
        if not room_id or not _validate_nickname(nickname):
            return _error("room:error", "invalid_payload", "A room id and a valid nickname are required")

        if service.get_player(request.sid) is not None:
            _leave_current_room()

        room, player = service.join_room(request.sid, room_id, nickname)
        join_room(room.id)
        emit(
            "room:player_joined",
            {"player": player.public_state(), "room": service.room_public_state(room)},
            to=room.id,
            include_self=False,
        )
        _ensure_room_task(room.id)
        return {"ok": True, "room": service.room_public_state(room), "player": player.public_state()}

    @socketio.on("room:leave")
    def room_leave(data=None):
        _leave_current_room()
        return {"ok": True}

    @socketio.on("room:reconnect")
    @_reports("room:error")
    def room_reconnect(data):
        payload = data or {}
        room_id = str(payload.get("roomId", "")).strip()
        player_id = str(payload.get("playerId", "")).strip()
        if not room_id or not player_id:
            return _error("room:error", "invalid_payload", "A room id and player id are required")

        room, player, game = service.reconnect_player(request.sid, room_id, player_id)
        join_room(room.id)
        emit(
            "room:player_reconnected",
            {"player": player.public_state(), "room": service.room_public_state(room)},
            to=room.id,
            include_self=False,
        )
        _ensure_room_task(room.id)
        return {
            "ok": True,
            "room": service.room_public_state(room),
            "player": player.public_state(),
            "gameState": game.get_game_state() if game else None,
        }

    @socketio.on("room:list")
    def room_list(data=None):
        return {"ok": True, "rooms": service.room_list()}

    @socketio.on("room:players")
    def room_players(data):
        payload = data or {}
        room_id = str(payload.get("roomId", "")).strip()
        room = service.get_room(room_id)
        if room is None:
            return _error("room:error", "room_not_found", "Room not found")
        return {"ok": True, "players": [p.public_state() for p in room.players]}

    # -- game --------------------------------------------------------------

    @socketio.on("game:start")
    @_reports("game:error")
    def game_start(data=None):
        payload = data or {}
        max_rounds_raw: Any = payload.get("maxRounds")
        max_rounds = None
        if max_rounds_raw is not None:
            max_rounds = _parse_int(max_rounds_raw)
            if max_rounds is None or max_rounds < 1 or max_rounds > 20:
                return _error("game:error", "invalid_rounds", "Rounds must be a whole number from 1 to 20")
        minimum_variance = _parse_flag(payload.get("minimumVariance", False))
        if minimum_variance is None:
            return _error("game:error", "invalid_mode", "minimumVariance must be true or false")

        game = service.start_game(request.sid, max_rounds=max_rounds, minimum_variance=minimum_variance)
        room = service.get_room(game.room_id)
        state = game.get_game_state()
        socketio.emit("game:started", {"gameState": state, "room": service.room_public_state(room)}, to=game.room_id)
        logger.info(
            "[start] room=%s rounds=%d minimum_variance=%s", game.room_id, game.max_rounds, game.minimum_variance
        )
        return {"ok": True, "gameState": state}

    @socketio.on("game:propose_topic")
    @_reports("game:error")
    def game_propose_topic(data):
        payload = data or {}
        text = _clean_text(payload.get("topic"), current_app.config["TOPIC_MAX_LENGTH"])
        if text is None:
            return _error(
                "game:error",
                "invalid_topic",
                f"Topic must be 1-{current_app.config['TOPIC_MAX_LENGTH']} characters",
            )

        game, topic = service.propose_topic(request.sid, text)
        if topic is None:
            return _rejected(game)

        state = game.get_game_state()
        socketio.emit(
            "game:topic_proposed",
            {
                "topic": {
                    "text": topic.text,
                    "proposedBy": topic.proposed_by,
                    "proposedByNickname": topic.proposed_by_nickname,
                },
                "gameState": state,
            },
            to=game.room_id,
        )
        if game.phase == "playing":
            socketio.emit("game:all_topics_proposed", {"gameState": state}, to=game.room_id)
        logger.info("[topic] room=%s by=%s topic=%r", game.room_id, topic.proposed_by_nickname, topic.text)
        return {"ok": True}

    @socketio.on("game:propose_word")
    @_reports("game:error")
    def game_propose_word(data):
        payload = data or {}
        word = _clean_text(payload.get("word"), current_app.config["WORD_MAX_LENGTH"])
        related_topic = _clean_text(payload.get("relatedTopic"), current_app.config["TOPIC_MAX_LENGTH"])
        if word is None or related_topic is None:
            return _error("game:error", "invalid_word", "A word and its related topic are required")

        game, proposed = service.propose_word(request.sid, word, related_topic)
        if proposed is None:
            return _rejected(game)

        state = game.get_game_state()
        socketio.emit(
            "game:word_proposed",
            {"votingRound": voting_round_state(game.current_voting_round), "gameState": state},
            to=game.room_id,
        )
        _ensure_room_task(game.room_id)
        return {"ok": True}

    @socketio.on("game:vote")
    @_reports("game:error")
    def game_vote(data):
        payload = data or {}
        score = _parse_int(payload.get("score"))
        if score is None:
            return _error("game:error", "invalid_score", "Score must be a whole number from 1 to 10")

        game, vote = service.vote_on_word(request.sid, score)
        if vote is None:
            return _rejected(game)

        state = game.get_game_state()
        socketio.emit(
            "game:vote_cast",
            {"vote": {"playerId": vote.player_id, "nickname": vote.nickname, "score": vote.score}, "gameState": state},
            to=game.room_id,
        )
        if game.phase == "voting_results":
            socketio.emit("game:voting_completed", {"gameState": state}, to=game.room_id)
        return {"ok": True}

    @socketio.on("game:state")
    @_reports("game:error")
    def game_state(data=None):
        return {"ok": True, "gameState": service.get_game_state(request.sid)}

    @socketio.on("game:pause")
    @_reports("game:error")
    def game_pause(data=None):
        game, ok = service.pause_game(request.sid)
        if not ok:
            return _rejected(game)
        socketio.emit("game:paused", {"gameState": game.get_game_state()}, to=game.room_id)
        return {"ok": True}

    @socketio.on("game:resume")
    @_reports("game:error")
    def game_resume(data=None):
        game, ok = service.resume_game(request.sid)
        if not ok:
            return _rejected(game)
        state = game.get_game_state()
        socketio.emit("game:resumed", {"gameState": state}, to=game.room_id)
        if game.phase == "voting_results":
            socketio.emit("game:voting_completed", {"gameState": state}, to=game.room_id)
        return {"ok": True}

    @socketio.on("game:end")
    @_reports("game:error")
    def game_end(data=None):
        game = service.end_game(request.sid)
        socketio.emit("game:ended", {"gameState": game.get_game_state()}, to=game.room_id)
        return {"ok": True}

    @socketio.on("disconnect")
    def on_disconnect(*args):
        player = service.mark_disconnected(request.sid)
        if player is None or not player.room_id:
            return
        room = service.get_room(player.room_id)
        if room is None:
            return
        socketio.emit(
            "room:player_disconnected",
            {"player": player.public_state(), "room": service.room_public_state(room)},
            to=room.id,
        )
