from fastapi import Request
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.services.deadline_service import PreparationDeadlineMonitor
from app.services.notification_service import NotificationSink
from app.services.payment_service import PaymentProvider


# Collaborators are created once in the lifespan and kept on app.state;
# tests swap them through app.dependency_overrides.


def get_notifier(request: Request) -> NotificationSink:
    return request.app.state.notifier


def get_deadline_monitor(request: Request) -> PreparationDeadlineMonitor:
    return request.app.state.deadline_monitor


def get_payment_provider(request: Request) -> PaymentProvider:
    return request.app.state.payment_provider


def get_session_factory(request: Request) -> async_sessionmaker:
    return request.app.state.session_factory
