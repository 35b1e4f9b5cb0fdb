"""
Gunicorn configuration for the Ember Streaks API.

Env vars that override defaults:
  PORT     — TCP port to bind
  WORKERS  — number of worker processes (default: 2)

Per-user sync locks live inside one worker. Writes from different workers are
kept consistent by the streak row's version counter, so any worker count is safe.
"""
import os

bind = f"0.0.0.0:{os.environ.get('PORT', '8000')}"

workers = int(os.environ.get("WORKERS", "2"))

# Uvicorn's ASGI loop inside Gunicorn's process manager.
worker_class = "uvicorn.workers.UvicornWorker"

keepalive = 5

# A sync that retries on conflicts still finishes well inside this.
timeout = 60

# App logs go through app.core.logging; gunicorn keeps its own access log.
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
accesslog = "-"
errorlog = "-"
access_log_format = '%(h)s "%(r)s" %(s)s %(b)sB %(D)sµs'

graceful_timeout = 30
