from variance.game import service


def names(received):
    return [pkt["name"] for pkt in received]


def last(received, name):
    return [pkt for pkt in received if pkt["name"] == name][-1]["args"][0]


def make_room(sio_factory, count=3):
    clients = [sio_factory() for _ in range(count)]
    created = clients[0].emit("room:create", {"nickname": "P0"}, callback=True)
    assert created["ok"]
    room_id = created["room"]["id"]
    for i, c in enumerate(clients[1:], start=1):
        joined = c.emit("room:join", {"roomId": room_id, "nickname": f"P{i}"}, callback=True)
        assert joined["ok"]
    for c in clients:
        c.get_received()
    return room_id, clients


def start_words(clients):
    started = clients[0].emit("game:start", {"maxRounds": 1}, callback=True)
    assert started["ok"]
    for i, c in enumerate(clients):
        assert c.emit("game:propose_topic", {"topic": f"  topic {i}  "}, callback=True) == {"ok": True}


def test_create_and_join(sio_factory):
    host, guest = sio_factory(), sio_factory()
    created = host.emit("room:create", {"nickname": "Host"}, callback=True)
    assert created["player"]["isHost"]
    host.get_received()

    joined = guest.emit("room:join", {"roomId": created["room"]["id"], "nickname": "Guest"}, callback=True)
    assert joined["ok"]
    assert [p["nickname"] for p in joined["room"]["players"]] == ["Host", "Guest"]

    received = host.get_received()
    assert names(received) == ["room:player_joined"]
    assert last(received, "room:player_joined")["player"]["nickname"] == "Guest"

    listed = guest.emit("room:list", callback=True)
    assert listed["rooms"][0]["playerCount"] == 2


def test_join_errors_are_acked(sio_factory):
    c = sio_factory()
    ack = c.emit("room:join", {"roomId": "nope", "nickname": "Ann"}, callback=True)
    assert ack == {"ok": False, "error": "room_not_found", "message": "Room not found"}
    assert names(c.get_received()) == ["room:error"]

    ack = c.emit("room:create", {"nickname": "<script>"}, callback=True)
    assert ack["error"] == "invalid_nickname"


def test_start_requires_host_and_players(sio_factory):
    room_id, clients = make_room(sio_factory, 2)
    ack = clients[1].emit("game:start", {}, callback=True)
    assert ack["error"] == "only_host"

    ack = clients[0].emit("game:start", {"maxRounds": 0}, callback=True)
    assert ack["error"] == "invalid_rounds"

    ack = clients[0].emit("game:start", {"minimumVariance": "yes"}, callback=True)
    assert ack["error"] == "invalid_mode"

    ack = clients[0].emit("game:start", {"maxRounds": 2, "minimumVariance": True}, callback=True)
    assert ack["ok"]
    assert ack["gameState"]["phase"] == "proposing_topics"
    assert ack["gameState"]["minimumVariance"] is True
    assert "game:started" in names(clients[1].get_received())


def test_topic_validation(sio_factory):
    room_id, clients = make_room(sio_factory, 2)
    clients[0].emit("game:start", {}, callback=True)

    ack = clients[0].emit("game:propose_topic", {"topic": "   "}, callback=True)
    assert ack["error"] == "invalid_topic"
    ack = clients[0].emit("game:propose_topic", {"topic": "x" * 51}, callback=True)
    assert ack["error"] == "invalid_topic"

    ack = clients[1].emit("game:propose_topic", {"topic": "cats"}, callback=True)
    assert ack["error"] == "not_your_turn"
    assert ack["message"] == "It is not your turn"


def test_full_word_round(sio_factory):
    room_id, clients = make_room(sio_factory, 3)
    start_words(clients)

    received = clients[2].get_received()
    assert names(received).count("game:topic_proposed") == 3
    state = last(received, "game:all_topics_proposed")["gameState"]
    assert state["phase"] == "playing"
    assert [t["text"] for t in state["topics"]] == ["topic 0", "topic 1", "topic 2"]

    ack = clients[0].emit("game:propose_word", {"word": "tabby", "relatedTopic": "topic 1"}, callback=True)
    assert ack == {"ok": True}
    voting = last(clients[1].get_received(), "game:word_proposed")
    assert voting["votingRound"]["word"] == "tabby"

    assert clients[0].emit("game:vote", {"score": 5}, callback=True)["error"] == "cannot_vote_own_word"
    assert clients[1].emit("game:vote", {"score": "11"}, callback=True)["error"] == "invalid_score"
    assert clients[1].emit("game:vote", {"score": 1}, callback=True) == {"ok": True}
    assert clients[1].emit("game:vote", {"score": 2}, callback=True)["error"] == "already_voted"
    assert clients[2].emit("game:vote", {"score": "10"}, callback=True) == {"ok": True}

    received = clients[0].get_received()
    assert names(received).count("game:vote_cast") == 2
    results = last(received, "game:voting_completed")["gameState"]
    assert results["phase"] == "voting_results"
    assert results["completedRounds"][0]["variance"] == 40.5
    assert results["players"][0]["score"] == 40.5

    state = clients[1].emit("game:state", callback=True)["gameState"]
    assert state["phase"] == "voting_results"


def test_pause_resume_and_end(sio_factory):
    room_id, clients = make_room(sio_factory, 2)
    start_words(clients)

    assert clients[1].emit("game:pause", callback=True)["error"] == "only_host"
    assert clients[0].emit("game:pause", callback=True) == {"ok": True}
    assert clients[0].emit("game:pause", callback=True)["error"] == "already_paused"
    assert "game:paused" in names(clients[1].get_received())

    assert clients[0].emit("game:resume", callback=True) == {"ok": True}
    assert clients[0].emit("game:end", callback=True) == {"ok": True}
    ended = last(clients[1].get_received(), "game:ended")
    assert ended["gameState"]["phase"] == "finished"


def test_leaving_mid_game_ends_two_player_game(sio_factory):
    room_id, clients = make_room(sio_factory, 3)
    start_words(clients)
    clients[2].get_received()

    clients[0].emit("room:leave", callback=True)
    received = clients[2].get_received()
    left = last(received, "room:player_left")
    assert left["player"]["nickname"] == "P0"
    assert left["room"]["players"][0]["nickname"] == "P1"
    assert left["room"]["hostId"] == left["room"]["players"][0]["id"]

    clients[1].emit("room:leave", callback=True)
    assert "game:ended" in names(clients[2].get_received())
    assert service.get_game(room_id).phase == "finished"


def test_disconnect_then_reconnect(sio_factory):
    room_id, clients = make_room(sio_factory, 2)
    player_id = clients[1].emit("room:players", {"roomId": room_id}, callback=True)["players"][1]["id"]

    clients[1].disconnect()
    dropped = last(clients[0].get_received(), "room:player_disconnected")
    assert dropped["player"]["connected"] is False

    again = sio_factory()
    ack = again.emit("room:reconnect", {"roomId": room_id, "playerId": player_id}, callback=True)
    assert ack["ok"]
    assert ack["player"]["id"] == player_id
    assert ack["player"]["connected"] is True
    assert "room:player_reconnected" in names(clients[0].get_received())


def test_string_mode_flag_is_parsed(sio_factory):
    room_id, clients = make_room(sio_factory, 2)
    ack = clients[0].emit("game:start", {"minimumVariance": "false"}, callback=True)
    assert ack["ok"]
    assert ack["gameState"]["minimumVariance"] is False
