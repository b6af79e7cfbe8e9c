from app.models.company import Company
from app.models.rider import Rider
from app.models.rider_credential import RiderCredential
from app.models.agent_session import AgentSession
from app.models.rider_device import RiderDevice
from app.models.agent_activity_log import AgentActivityLog
from app.models.location_history import LocationHistory
from app.models.customer import Customer
from app.models.order import Order
from app.models.company_settings import CompanySettings
from app.models.map_settings import MapSettings
from app.models.notification_setting import NotificationSetting
from app.models.external_integration import ExternalIntegration
from app.models.integration_sync_log import IntegrationSyncLog
