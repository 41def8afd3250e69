"""WSGI entry, e.g. ``gunicorn -k eventlet -w 1 wsgi:app`` from backend/."""

from dotenv import load_dotenv

load_dotenv()

from variance.server import create_app  # noqa: E402

app, socketio = create_app()
