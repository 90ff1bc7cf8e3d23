import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "doogle")
LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()

HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "42222"))

# "development" advertises http://localhost:<PORT>, "production" the public host
PROXY_MODE = os.environ.get("PROXY_MODE", "production").lower()
PUBLIC_HOSTNAME = os.environ.get("PUBLIC_HOSTNAME", "doogle.test").lower()
PUBLIC_SCHEME = os.environ.get("PUBLIC_SCHEME", "https").lower()
DEV_PUBLIC_HOSTNAME = os.environ.get("DEV_PUBLIC_HOSTNAME", f"localhost:{PORT}").lower()

UPSTREAM_HOSTNAME = os.environ.get("UPSTREAM_HOSTNAME", "www.google.com").lower()
# Domain that public subdomains map onto; empty means UPSTREAM_HOSTNAME without "www."
UPSTREAM_BASE_DOMAIN = os.environ.get("UPSTREAM_BASE_DOMAIN", "").lower()
UPSTREAM_SCHEME = os.environ.get("UPSTREAM_SCHEME", "https").lower()
UPSTREAM_PORT = int(os.environ["UPSTREAM_PORT"]) if os.environ.get("UPSTREAM_PORT") else None
# "false" skips certificate validation for the upstream; logged at startup
UPSTREAM_VERIFY_TLS = os.getenv("UPSTREAM_VERIFY_TLS", "true").lower() == "true"
UPSTREAM_TIMEOUT = (
    float(os.environ["UPSTREAM_TIMEOUT"]) if os.environ.get("UPSTREAM_TIMEOUT") else None
)
UPSTREAM_MAX_CONNECTIONS = int(os.getenv("UPSTREAM_MAX_CONNECTIONS", "200"))
UPSTREAM_MAX_KEEPALIVE = int(os.getenv("UPSTREAM_MAX_KEEPALIVE", "50"))

BRAND_TOKEN = os.environ.get("BRAND_TOKEN", "Doogle")
UPSTREAM_BRAND_TOKEN = os.environ.get("UPSTREAM_BRAND_TOKEN", "google").lower()
BRANDED_SEARCH_TERM = os.environ.get("BRANDED_SEARCH_TERM", "")
REWRITE_HTML = os.getenv("REWRITE_HTML", "true").lower() == "true"

OVERRIDES_ENABLED = os.getenv("OVERRIDES_ENABLED", "true").lower() == "true"
OVERRIDES_DIR = os.environ.get("OVERRIDES_DIR", os.path.join(os.getcwd(), "overrides"))

METRICS_PATH = os.environ.get("METRICS_PATH", "/__doogle/metrics")

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")
