#!/usr/bin/env python3
"""Start the maintenance Celery worker with an embedded beat scheduler."""

import sys
import warnings

# Containers commonly run as root.
warnings.filterwarnings('ignore', category=UserWarning, message='.*superuser privileges.*')
warnings.filterwarnings('ignore', category=RuntimeWarning, message='.*superuser privileges.*')

from bookmark_importer.workers.celery_app import celery_app

if __name__ == '__main__':
    celery_app.worker_main([
        'worker',
        '--beat',
        '--loglevel=info',
        '--queues=maintenance,celery',
        '--pool=solo',
        '--without-mingle',
        '--without-gossip',
    ] + sys.argv[1:])
