# Config module
from impress_service.config.settings import get_settings, reload_settings, Settings
