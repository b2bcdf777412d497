from celery import Celery

celery = Celery("todolist")

# Broker, result backend, queue topology and beat schedule
celery.config_from_object("app.config.celeryconfig")
