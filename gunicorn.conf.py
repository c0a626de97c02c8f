import os


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, "") or "").strip() or default)
    except ValueError:
        return default


wsgi_app = "app:create_app()"
bind = f"{os.getenv('HOST', '0.0.0.0')}:{_env_int('PORT', 3000)}"

# Each worker holds its own SQLAlchemy pool (DB_POOL_SIZE + DB_MAX_OVERFLOW connections).
workers = max(1, _env_int("WEB_CONCURRENCY", 2))
threads = max(1, _env_int("PYTHON_THREADS", 4))

# Job endpoints run full recomputes inside the request.
timeout = max(30, _env_int("GUNICORN_TIMEOUT", 300))
graceful_timeout = max(5, _env_int("GUNICORN_GRACEFUL_TIMEOUT", 30))
keepalive = max(1, _env_int("GUNICORN_KEEPALIVE", 5))

accesslog = None
errorlog = "-"
loglevel = str(os.getenv("LOG_LEVEL", "info") or "info").lower()
