"""
Gunicorn configuration for the judging service.

Every worker holds its own websockets; set REDIS_URL whenever WEB_CONCURRENCY
is above 1 so consensus updates fan out across workers.
"""
import os
import multiprocessing

bind = os.environ.get("BIND", "0.0.0.0:8000")
backlog = 2048

workers = int(os.environ.get("WEB_CONCURRENCY", multiprocessing.cpu_count() * 2 + 1))
worker_class = "uvicorn.workers.UvicornWorker"
worker_connections = 1000
timeout = 120
keepalive = 5

accesslog = os.environ.get("GUNICORN_ACCESS_LOG", "-")
errorlog = os.environ.get("GUNICORN_ERROR_LOG", "-")
loglevel = os.environ.get("LOG_LEVEL", "info").lower()
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s "%(f)s" "%(a)s" %(D)s'

proc_name = "judging"
wsgi_app = "judging.main:app"

daemon = False
pidfile = "/tmp/gunicorn-judging.pid"

limit_request_line = 4094
limit_request_fields = 100
limit_request_field_size = 8190


def when_ready(server):
    if workers > 1 and not os.environ.get("REDIS_URL"):
        server.log.warning("Multiple workers without REDIS_URL: realtime events stay inside one worker")
