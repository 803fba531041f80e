# =============================================================================
# Django Project Configuration Package
# =============================================================================
# Settings and the Celery application for the wallet billing backend.
#
# Import Celery app to ensure it's loaded when Django starts so that
# shared_task definitions bind to it.
# =============================================================================

from config.celery import app as celery_app

__all__ = ("celery_app",)
