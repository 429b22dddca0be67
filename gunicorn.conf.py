"""Gunicorn configuration for the helpdesk API.

Run from backend/: gunicorn -c ../gunicorn.conf.py app.main:app
"""
import multiprocessing
import os

bind = os.environ.get("HELPDESK_BIND", "0.0.0.0:8000")
workers = int(os.environ.get("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
timeout = 60
graceful_timeout = 30
keepalive = 5
# Recycle workers so long-lived SMS provider connections get dropped.
max_requests = 2000
max_requests_jitter = 200
preload_app = True
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info")
