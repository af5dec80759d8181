"""
Constants used throughout the D365 OData library.
"""

# Declared types with this prefix are OData primitives (Edm.String, Edm.Int64, ...)
PRIMITIVE_TYPE_PREFIX = "Edm."

# Refresh the bearer token this many seconds before it actually expires
DEFAULT_REFRESH_MARGIN = 300

# Maximum normalized distance (0 = identical) accepted by entity name matching
DEFAULT_MATCH_THRESHOLD = 0.4

DEFAULT_AUTHORITY_HOST = "https://login.microsoftonline.com"
DEFAULT_REQUEST_TIMEOUT = 30

USER_AGENT = 'D365-OData-MCP/1.0'

# Filtering on this field implies a query across companies
COMPANY_FIELD = "dataAreaId"
