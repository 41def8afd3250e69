import os


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev")

    # CORS
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")

    # Reverse proxy / IP headers
    TRUST_PROXY_HEADERS = os.environ.get("TRUST_PROXY_HEADERS", "1") == "1"

    # Empty means: pick per platform in create_app
    SOCKETIO_ASYNC_MODE = os.environ.get("SOCKETIO_ASYNC_MODE", "").strip()

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Lobby
    MAX_PLAYERS = int(os.environ.get("MAX_PLAYERS", "8"))
    RECONNECT_GRACE_SEC = int(os.environ.get("RECONNECT_GRACE_SEC", "10"))

    # Game
    DEFAULT_MAX_ROUNDS = int(os.environ.get("DEFAULT_MAX_ROUNDS", "1"))
    VOTE_DURATION_SEC = int(os.environ.get("VOTE_DURATION_SEC", "30"))
    RESULTS_DURATION_SEC = int(os.environ.get("RESULTS_DURATION_SEC", "3"))
    TOPIC_MAX_LENGTH = int(os.environ.get("TOPIC_MAX_LENGTH", "50"))
    WORD_MAX_LENGTH = int(os.environ.get("WORD_MAX_LENGTH", "40"))
