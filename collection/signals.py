from django.db.models.signals import post_delete, post_save

from .constants import DELETE, INSERT, UPDATE
from .datasource import MODELS, as_row
from .realtime import ChangeEvent, change_feed


def publish_save(sender, instance, created, raw=False, **kwargs):
    if raw:
        return
    change_feed.publish(
        ChangeEvent(
            table=sender._meta.db_table,
            event_type=INSERT if created else UPDATE,
            new=as_row(instance),
        )
    )


def publish_delete(sender, instance, **kwargs):
    change_feed.publish(ChangeEvent(table=sender._meta.db_table, event_type=DELETE, old=as_row(instance)))


for model in MODELS:
    post_save.connect(publish_save, sender=model, dispatch_uid=f"collection-save-{model._meta.db_table}")
    post_delete.connect(publish_delete, sender=model, dispatch_uid=f"collection-delete-{model._meta.db_table}")
