#!/usr/bin/env python3
"""
Run the BetaLift Celery worker or beat scheduler from the repository root.

    python celery_worker.py worker -Q push,maintenance --loglevel=info
    python celery_worker.py beat
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from betalift.tasks.celery_app import celery_app  # noqa: E402

if __name__ == "__main__":
    celery_app.start()
