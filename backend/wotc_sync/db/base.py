# Import all the models, so that Base has them before being
# imported by Alembic
from wotc_sync.db.base_class import Base  # noqa

from wotc_sync.models.portal import StatePortalConfig  # noqa
from wotc_sync.models.integration import (  # noqa
    IntegrationConnection,
    IntegrationSyncedRecord,
    IntegrationSyncLog,
)
from wotc_sync.models.employee import Employee, HoursWorked  # noqa
