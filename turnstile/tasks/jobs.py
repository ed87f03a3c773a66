from turnstile.tasks.celery_app import celery
from turnstile.tasks import worker_jobs


@celery.task(name="turnstile.tasks.jobs.sweep_pending_orders")
def sweep_pending_orders():
    return worker_jobs.sweep_pending_orders()


@celery.task(name="turnstile.tasks.jobs.process_notification_queue")
def process_notification_queue(limit: int = 50):
    return worker_jobs.process_notification_queue(limit=limit)


@celery.task(name="turnstile.tasks.jobs.poll_order_until_settled")
def poll_order_until_settled(order_id: str, transaction_id: str | None = None):
    return worker_jobs.poll_order_until_settled(order_id, transaction_id)
