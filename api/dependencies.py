"""FastAPI dependencies resolving the services built at start-up."""
from fastapi import Request

from database.repositories.import_run_repo import ImportRunRepository
from scheduler.scheduler import ImportScheduler
from shared.work_queue import RedisWorkQueue


def get_scheduler(request: Request) -> ImportScheduler:
    """Dependency for the import scheduler."""
    return request.app.state.scheduler


def get_run_repo(request: Request) -> ImportRunRepository:
    """Dependency for the import run ledger."""
    return request.app.state.run_repo


def get_queue(request: Request) -> RedisWorkQueue:
    """Dependency for the work queue."""
    return request.app.state.queue
