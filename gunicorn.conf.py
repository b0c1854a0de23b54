"""
Gunicorn configuration for the Falko service.

Sync workers: per-customer ledger mutations are serialized by database row
locks, so any number of workers can run side by side.
"""
import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

# Worker configuration
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
worker_class = 'sync'
timeout = 60  # Collaborator calls time out well before this
keepalive = 5

# Logging
accesslog = '-'  # stdout
errorlog = '-'   # stderr
loglevel = os.getenv('LOG_LEVEL', 'info')
capture_output = True

proc_name = 'falko'

preload_app = True

graceful_timeout = 30


def on_starting(server):
    print("[Gunicorn] Starting Falko server...")


def on_exit(server):
    print("[Gunicorn] Falko server shutting down...")
