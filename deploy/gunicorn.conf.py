import os

wsgi_app = "lingowow.main:app"
bind = os.getenv("LINGOWOW_BIND", "127.0.0.1:8000")
# The scheduler runs in-process; more than one worker needs ENABLE_SCHEDULER=false on all but one.
workers = int(os.getenv("LINGOWOW_WORKERS", "1"))
worker_class = "uvicorn.workers.UvicornWorker"
timeout = 60
graceful_timeout = 30
keepalive = 5
loglevel = "info"
accesslog = "-"
errorlog = "-"
