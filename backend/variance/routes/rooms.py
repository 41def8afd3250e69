from __future__ import annotations

from flask import Blueprint, jsonify

from ..game import service

bp = Blueprint("rooms", __name__)


@bp.get("/rooms")
def list_rooms():
    return jsonify({"rooms": service.room_list()})


@bp.get("/rooms/<room_id>")
def get_room(room_id: str):
    room = service.get_room(room_id)
    if not room:
        return jsonify({"error": "room_not_found"}), 404

    game = service.get_game(room_id)
    payload = service.room_public_state(room)
    payload["gameState"] = game.get_game_state() if game else None
    return jsonify(payload)
