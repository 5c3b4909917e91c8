import multiprocessing
import os

# gunicorn -c gunicorn.conf.py
wsgi_app = "vendqr:create_app()"

# Small container defaults; WEB_CONCURRENCY overrides the worker count
workers = int(os.environ.get('WEB_CONCURRENCY', (multiprocessing.cpu_count() * 2) + 1))
threads = int(os.environ.get('GUNICORN_THREADS', '4'))
worker_class = "gthread"
# create_all() runs once in the master
preload_app = True
bind = f":{os.environ.get('PORT', '8000')}"
# Render/Heroku style proxy headers; ProxyFix reads X-Forwarded-For
forwarded_allow_ips = "*"
# Uploads and DB calls are bounded well below this
timeout = 30
keepalive = 75
accesslog = "-"
errorlog = "-"
loglevel = os.environ.get('LOG_LEVEL', 'info').lower()
