APP_NAME = "dockhand"

# ---------------------------------------------------------------------
# Manifests
# ---------------------------------------------------------------------

SERVICE_MANIFEST_FILE_NAME = "dockhand.service.yml"
PROVIDER_MANIFEST_FILE_NAME = "dockhand.provider.yml"
DEFAULT_PROVIDER_ENTRY = "provider.py:Provider"

# ---------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------

PACKAGE_REGISTRY_PREFIX = "npm:"
VERSION_CONTROL_PREFIXES = ("https://github.com/", "github:")
LOCAL_PATH_PREFIX = "file:"
GITHUB_CLONE_URL = "https://github.com/{owner}/{repo}.git"
DEFAULT_PACKAGE_VERSION = "latest"
DEFAULT_VCS_REF = "main"

# ---------------------------------------------------------------------
# External tools
# ---------------------------------------------------------------------

DEFAULT_COMPOSE_COMMAND = "docker compose"
DEFAULT_DOCKER_COMMAND = "docker"
DEFAULT_GIT_COMMAND = "git"
DEFAULT_NPM_REGISTRY = "https://registry.npmjs.org"

# ---------------------------------------------------------------------
# Timeouts (seconds)
# ---------------------------------------------------------------------

FETCH_TIMEOUT = 180.0
COMMAND_TIMEOUT = 120.0
START_HEALTH_TIMEOUT = 60.0
WAIT_HEALTHY_TIMEOUT = 120.0
HEALTH_POLL_INTERVAL = 2.0
HEALTH_PROBE_TIMEOUT = 5.0
RESTART_PAUSE = 2.0
RESOLVE_TIMEOUT = FETCH_TIMEOUT * 2

# ---------------------------------------------------------------------
# Service conventions
# ---------------------------------------------------------------------

HOST_PORT_ENV_TEMPLATE = "{service}_HOST_PORT"
HEALTH_PORT_PLACEHOLDERS = ("__PORT__", "{port}")
DEFAULT_HEALTH_ENDPOINT = "/health"
LOCALHOST = "localhost"
