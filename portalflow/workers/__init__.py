"""
Celery workers for queued workflow runs.
"""
