"""SQLAlchemy models for the NSL operations backend."""

from app.models.load import Load, LoadEvent  # noqa: F401
from app.models.quote import Quote  # noqa: F401
from app.models.sync_run import SyncRun  # noqa: F401
from app.models.webhook import PortProDeadLetter, PortProWebhookLog  # noqa: F401
