# Models package — import all models here so Alembic can discover them.

from app.models.user import User  # noqa: F401
from app.models.member import Member  # noqa: F401
from app.models.event import Event  # noqa: F401
from app.models.registration import Registration  # noqa: F401
from app.models.audit import AuditEvent  # noqa: F401
from app.models.notification_log import NotificationLog  # noqa: F401
