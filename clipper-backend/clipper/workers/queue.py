"""
Queue Configuration - Payout queue with retry support
"""
from redis import Redis
from rq import Queue, Retry
from clipper.core.settings import settings

# Redis connection
redis_conn = Redis.from_url(settings.redis_url)

queue = Queue(settings.rq_queue_name, connection=redis_conn)


# =============================================================================
# Retry Configuration
# =============================================================================

def get_retry_config(max_retries: int = 3) -> Retry:
    """
    Retry with widening backoff.
    Intervals: 1m, 5m, 15m (a busy lock usually clears within minutes)
    """
    return Retry(max=max_retries, interval=[60, 300, 900])


RETRY_PIPELINE = get_retry_config(3)


def enqueue_pipeline(func, *args, job_timeout=900, **kwargs):
    """Enqueue a pipeline job with retry"""
    return queue.enqueue(
        func, *args,
        job_timeout=job_timeout,
        retry=RETRY_PIPELINE,
        **kwargs
    )
