# investorpedia/utils/locks.py
import logging
import threading
from contextlib import contextmanager

from flask import current_app

from investorpedia.errors import LockTimeout
from investorpedia.extensions import get_redis_client

logger = logging.getLogger(__name__)

_registry_guard = threading.Lock()
_local_locks = {}


def _local_lock(key):
    with _registry_guard:
        lock = _local_locks.get(key)
        if lock is None:
            lock = _local_locks[key] = threading.Lock()
        return lock


def subscription_lock_key(stripe_subscription_id):
    return f"subscription:{stripe_subscription_id}"


def payment_lock_key(stripe_payment_intent_id):
    return f"payment:{stripe_payment_intent_id}"


def user_lock_key(user_id):
    return f"user:{user_id}"


@contextmanager
def resource_lock(key, ttl=None, wait=None):
    """
    Serialize read-modify-write work on one resource.

    Uses a Redis lock when REDIS_URL is configured so every web and worker
    process shares it; otherwise a lock local to this process.

    Raises:
        LockTimeout: if the lock is not acquired within `wait` seconds
    """
    ttl = ttl or current_app.config.get("LOCK_TTL_SECONDS", 30)
    wait = wait if wait is not None else current_app.config.get("LOCK_WAIT_SECONDS", 10)

    client = get_redis_client()
    if client is not None:
        lock = client.lock(f"lock:{key}", timeout=ttl, blocking_timeout=wait)
        acquired = lock.acquire()
    else:
        lock = _local_lock(key)
        acquired = lock.acquire(timeout=wait)

    if not acquired:
        logger.warning("Lock acquisition timed out", extra={"lock_key": key, "wait_seconds": wait})
        raise LockTimeout(f"Resource busy: {key}")

    try:
        yield
    finally:
        lock.release()
