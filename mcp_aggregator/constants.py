"""Shared constants for MCP Aggregator."""

SERVER_NAME = "MCP Aggregator"
SERVER_VERSION = "0.1.0"
AUTHOR = "mcp-aggregator contributors"

# Network defaults
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 9000

# Downstream streamable HTTP endpoint
STREAMABLE_HTTP_PATH = "/mcp"

# Persisted state
DEFAULT_CONFIG_FILE = "mcp-servers.json"
DEFAULT_CREDENTIALS_FILE = "auth-credentials.json"
CONFIG_ENV_VAR = "MCP_AGGREGATOR_CONFIG"
CREDENTIALS_ENV_VAR = "MCP_AGGREGATOR_CREDENTIALS"

# Logging defaults
LOG_DIR = "logs"
DEFAULT_LOG_FILE = "unknown_aggregator.log"
DEFAULT_LOG_LEVEL = "INFO"

# Upstream timeouts (seconds)
MCP_INIT_TIMEOUT = 15
CAP_FETCH_TIMEOUT = 10.0
UPSTREAM_CALL_TIMEOUT = 60.0
HTTP_TIMEOUT = 30.0

# Namespacing delimiters
NAME_DELIMITER = "__"
URI_DELIMITER = "://"

# OAuth 2.0 authorization code flow
OAUTH_CALLBACK_HOST = "localhost"
OAUTH_CALLBACK_BIND = "127.0.0.1"
OAUTH_CALLBACK_PORT = 3000
OAUTH_CALLBACK_PATH = "/callback"
OAUTH_REDIRECT_URI = f"http://{OAUTH_CALLBACK_HOST}:{OAUTH_CALLBACK_PORT}{OAUTH_CALLBACK_PATH}"
OAUTH_CALLBACK_TIMEOUT = 300.0
OAUTH_DEFAULT_SCOPE = "read write"
OAUTH_METADATA_PATH = "/.well-known/oauth-authorization-server"
OAUTH_CLIENT_NAME = "MCP Aggregator"
