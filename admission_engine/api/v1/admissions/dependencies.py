from functools import lru_cache

from admission_engine.core.config import Settings, settings
from admission_engine.integrations.documents import (
    DocumentGenerator,
    HttpDocumentGenerator,
    UnconfiguredDocumentGenerator,
)
from admission_engine.integrations.notifications import (
    HttpNotificationDispatcher,
    LoggingNotificationDispatcher,
    NotificationDispatcher,
)

from .service import AdmissionWorkflowEngine


def build_engine(config: Settings) -> AdmissionWorkflowEngine:
    """Wire the engine with HTTP collaborators when their URLs are configured."""
    notifier: NotificationDispatcher
    if config.notification_webhook_url:
        notifier = HttpNotificationDispatcher(
            config.notification_webhook_url, timeout=config.collaborator_timeout_seconds
        )
    else:
        notifier = LoggingNotificationDispatcher()

    documents: DocumentGenerator
    if config.document_service_url:
        documents = HttpDocumentGenerator(
            config.document_service_url, timeout=config.collaborator_timeout_seconds
        )
    else:
        documents = UnconfiguredDocumentGenerator()

    return AdmissionWorkflowEngine(notifier, documents, config=config)


@lru_cache
def get_admission_engine() -> AdmissionWorkflowEngine:
    return build_engine(settings)
