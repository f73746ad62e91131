APP_NAME = "ERDVault"
VERSION = "1.0.0"
SCHEMA_VERSION = "1"

BUNDLE_FORMAT_VERSION = "1.0"

HISTORY_RETENTION = 50
HISTORY_DEFAULT_LIMIT = 20
SEARCH_DEFAULT_LIMIT = 50

DEFAULT_DIAGRAM_NAME = "New diagram"
DEFAULT_TEMPLATE_NAME = "New template"
DEFAULT_IMPORT_NAME = "Imported diagram"
DEFAULT_HISTORY_DESCRIPTION = "Autosave"
DEFAULT_TEMPLATE_CATEGORY = "custom"

DEFAULT_TABLE_COLOR = "#4A9EFF"
DEFAULT_RELATION_COLOR = "#888"

ENCRYPTION_KEY_SETTING = "encryption_key"
APP_CONFIG_SETTING = "app_config"
