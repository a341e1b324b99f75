# backend/gunicorn_conf.py

# Gunicorn config file for the event API
# Run with: gunicorn -c gunicorn_conf.py

import os

wsgi_app = "nearflow.main:app"
bind = os.getenv("BIND", "0.0.0.0:8000")
workers = int(os.getenv("NEARFLOW_WORKERS", "4"))
worker_class = "uvicorn.workers.UvicornWorker"

# Sessions live in MongoDB, so any worker can serve any user
forwarded_allow_ips = "*"

# Send access and error logs to stdout and stderr
accesslog = "-"
errorlog = "-"
loglevel = os.getenv("LOG_LEVEL", "info")
