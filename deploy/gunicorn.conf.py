"""
Gunicorn Configuration

Production settings for the Cricket Auction API.
Run with: gunicorn cricket_auction.main:app -c deploy/gunicorn.conf.py
"""
import os
import multiprocessing

# Server socket
bind = os.environ.get("BIND", "0.0.0.0:8000")
backlog = 2048

# Worker processes. The auction relies on the database for coordination,
# so any worker count is safe; the in-memory event adapter only reaches
# subscribers connected to the same worker.
workers = int(os.environ.get("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
timeout = 120
keepalive = 5

# Logging
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

# Process naming
proc_name = "cricket-auction"

# Server mechanics
daemon = False
pidfile = "/tmp/gunicorn.pid"

# Security
limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190


def when_ready(server):
    server.log.info("Cricket auction workers ready")


def worker_int(worker):
    worker.log.info(f"Worker {worker.pid} interrupted")
