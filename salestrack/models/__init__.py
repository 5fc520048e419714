# Models package: import all models here so Alembic can discover them.

from salestrack.models.user import User  # noqa: F401
from salestrack.models.prospect import Prospect  # noqa: F401
from salestrack.models.activity import Activity  # noqa: F401
from salestrack.models.audit import AuditLog  # noqa: F401
