import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "collection_dashboard.settings")

app = Celery("collection_dashboard")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()
