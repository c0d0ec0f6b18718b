# Gunicorn configuration for the voice practice API.
# Sessions live in process memory, so every connection must land on the
# same worker: keep a single worker and scale with sticky routing.
bind = "0.0.0.0:8000"
wsgi_app = "ielts_voice.main:app"
workers = 1
worker_class = "uvicorn.workers.UvicornWorker"
keepalive = 120
timeout = 60
graceful_timeout = 30
loglevel = "info"
accesslog = "-"
errorlog = "-"
