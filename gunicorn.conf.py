"""
Gunicorn configuration for the loyalty engine.

    gunicorn -c gunicorn.conf.py run:app
"""
import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

workers = int(os.getenv('GUNICORN_WORKERS', '2'))
worker_class = 'sync'
# A manual recalculation for a large organization runs inside the request
timeout = int(os.getenv('GUNICORN_TIMEOUT', '300'))
keepalive = 5

accesslog = '-'
errorlog = '-'
loglevel = os.getenv('LOG_LEVEL', 'info')
capture_output = True

proc_name = 'loyalty-engine'

# The scheduler starts once in the master when the app is preloaded
preload_app = True

graceful_timeout = 30


def on_starting(server):
    print("[Gunicorn] Starting loyalty engine...")


def on_exit(server):
    print("[Gunicorn] Loyalty engine shutting down...")
