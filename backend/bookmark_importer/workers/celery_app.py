"""Celery application for background maintenance (stale job sweeps)."""

import ssl

from celery import Celery

from bookmark_importer.core.config import get_settings
from bookmark_importer.core.logging_config import configure_logging

settings = get_settings()
configure_logging(settings.log_level)

broker_url = settings.celery_broker_url or settings.redis_url
backend_url = settings.celery_result_url or settings.redis_url


def _tls_url(url: str) -> tuple[str, bool]:
    """Upgrade Upstash URLs to TLS and add ``ssl_cert_reqs`` for the backend."""
    if ".upstash.io" in url and url.startswith("redis://"):
        url = url.replace("redis://", "rediss://", 1)
    if not url.startswith("rediss://"):
        return url, False
    if "ssl_cert_reqs" not in url:
        separator = "&" if "?" in url else "?"
        url = f"{url}{separator}ssl_cert_reqs=none"
    return url, True


broker_url, broker_ssl = _tls_url(broker_url)
backend_url, backend_ssl = _tls_url(backend_url)
is_ssl = broker_ssl or backend_ssl

celery_app = Celery(
    "bookmark_importer",
    broker=broker_url,
    backend=backend_url,
)

celery_config = {
    "task_serializer": "json",
    "accept_content": ["json"],
    "result_serializer": "json",
    "timezone": "UTC",
    "enable_utc": True,
    "task_acks_late": True,
    "task_reject_on_worker_lost": True,
    "worker_prefetch_multiplier": 1,
    "task_time_limit": 600,
    "task_soft_time_limit": 540,
    "result_expires": 3600,
    "broker_connection_retry_on_startup": True,
    "worker_hijack_root_logger": False,
    "task_default_queue": "maintenance",
    "task_routes": {
        "bookmark_importer.workers.tasks.cleanup_stale_jobs": {"queue": "maintenance"},
    },
    "beat_schedule": {
        "sweep-stale-import-jobs": {
            "task": "bookmark_importer.workers.tasks.cleanup_stale_jobs",
            "schedule": float(settings.stale_sweep_interval_seconds),
        },
    },
}

if is_ssl:
    ssl_dict = {"ssl_cert_reqs": ssl.CERT_NONE}
    celery_config["broker_use_ssl"] = ssl_dict
    celery_config["result_backend_use_ssl"] = ssl_dict
    celery_config["broker_transport_options"] = ssl_dict.copy()
    celery_config["result_backend_transport_options"] = ssl_dict.copy()

celery_app.conf.update(celery_config)

from bookmark_importer.workers.tasks import cleanup_jobs  # noqa: E402,F401
