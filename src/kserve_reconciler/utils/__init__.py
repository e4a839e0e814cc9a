# ABOUTME: Utilities package initialization for the KServe reconciler
# ABOUTME: Contains the API client, structured logging and the work queue

"""
KServe Reconciler Utilities Package

Shared utilities:
    - client.py: Async Kubernetes REST API client
    - logging.py: Structured logging with correlation IDs and audit trail
    - workqueue.py: Per-key serialized, retried reconciliation cycles
"""
