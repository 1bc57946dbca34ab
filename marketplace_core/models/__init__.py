# Import all models here so Alembic can discover them.

from marketplace_core.models.user import User  # noqa: F401
from marketplace_core.models.professional import ProfessionalProfile  # noqa: F401
from marketplace_core.models.booking import Booking  # noqa: F401
from marketplace_core.models.background_check import BackgroundCheck  # noqa: F401
from marketplace_core.models.webhook_event import WebhookEvent  # noqa: F401
from marketplace_core.models.audit import AuditEvent  # noqa: F401
