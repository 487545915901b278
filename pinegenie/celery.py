import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "pinegenie.settings")

app = Celery("pinegenie")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
