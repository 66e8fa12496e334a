from celery import Celery
from celery.schedules import crontab
from storefront.core.config import settings

broker_url = settings.CELERY_BROKER_URL
result_backend = settings.CELERY_RESULT_BACKEND or broker_url

celery_app = Celery('storefront', broker=broker_url, backend=result_backend)
celery_app.autodiscover_tasks(["storefront.tasks"])

celery_app.conf.update(
    task_serializer='json',
    result_serializer='json',
    accept_content=['json'],
    worker_concurrency=max(1, settings.CELERY_CONCURRENCY),
    beat_schedule={
        'fail-stale-transactions': {
            'task': 'storefront.tasks.tasks.fail_stale_transactions_task',
            'schedule': crontab(minute='*/10'),
            'args': (settings.STALE_TRANSACTION_MINUTES,),
        },
    },
)
