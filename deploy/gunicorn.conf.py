"""Sample gunicorn configuration for resume-mcp.

Run with ``gunicorn -c deploy/gunicorn.conf.py "resume_mcp.http:build_http_app()"``.
"""

from pathlib import Path

bind = "0.0.0.0:8787"

# Caller sessions live in process memory; more workers would split them.
workers = 1
worker_class = "uvicorn.workers.UvicornWorker"

keepalive = 5
graceful_timeout = 30
timeout = 60

pidfile = str(Path("/var/run/resume-mcp/gunicorn.pid"))
errorlog = "-"  # stderr
accesslog = "-"  # stdout
loglevel = "info"

# CF-Connecting-IP / X-Forwarded-For feed the caller identity key
forwarded_allow_ips = "*"
