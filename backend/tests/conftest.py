import pytest

from variance.config import Config
from variance.game import service
from variance.game.engine import Game
from variance.game.models import Player
from variance.server import create_app


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret"
    TRUST_PROXY_HEADERS = False
    SOCKETIO_ASYNC_MODE = "threading"


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, start: int = 1_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture(autouse=True)
def clean_lobby():
    service.clear_all()
    yield
    service.clear_all()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def make_game(clock):
    def _make(count=3, minimum_variance=False, max_rounds=1):
        players = [Player(socket_id=f"sid-{i}", nickname=f"P{i}") for i in range(count)]
        if players:
            players[0].is_host = True
        game = Game(
            room_id="room-1",
            host_id=players[0].id if players else "",
            max_rounds=max_rounds,
            minimum_variance=minimum_variance,
            clock=clock,
        )
        for p in players:
            game.add_player(p)
        return game, players

    return _make


@pytest.fixture()
def app_and_socketio():
    return create_app(TestConfig)


@pytest.fixture()
def flask_app(app_and_socketio):
    return app_and_socketio[0]


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_factory(app_and_socketio):
    flask_app, socketio = app_and_socketio
    clients = []

    def _make():
        test_client = socketio.test_client(flask_app, flask_test_client=flask_app.test_client())
        clients.append(test_client)
        return test_client

    yield _make
    for test_client in clients:
        try:
            if test_client.is_connected():
                test_client.disconnect()
        except RuntimeError:
            pass
