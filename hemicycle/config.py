"""Runtime configuration.

All settings come from environment variables, optionally loaded from a
``.env`` file in the working directory. Values are resolved once at import.
"""

import os
from datetime import date

from dotenv import load_dotenv

# Load environment variables from .env file if present
load_dotenv()

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

DB_PATH = os.environ.get("HEMICYCLE_DB_PATH", "data/hemicycle.duckdb")

LEGISLATURE = int(os.environ.get("ASSEMBLEE_NATIONALE_LEGISLATURE", "17"))

USER_AGENT = os.environ.get("HEMICYCLE_USER_AGENT", "hemicycle-bot/1.0")

# Timeouts (seconds). Probes are short, large archives get several minutes.
PROBE_TIMEOUT_SECONDS = int(os.environ.get("PROBE_TIMEOUT_SECONDS", "30"))
DOWNLOAD_TIMEOUT_SECONDS = int(os.environ.get("DOWNLOAD_TIMEOUT_SECONDS", "120"))
LARGE_ARCHIVE_TIMEOUT_SECONDS = int(os.environ.get("LARGE_ARCHIVE_TIMEOUT_SECONDS", "600"))

# Stats calculator
STATS_CONCURRENCY = int(os.environ.get("STATS_CONCURRENCY", "3"))
LOYALTY_WINDOW_START = date.fromisoformat(os.environ.get("LOYALTY_WINDOW_START", "2022-01-01"))

# Senate amendment dump filter
AMENDMENT_DUMP_YEARS = int(os.environ.get("AMENDMENT_DUMP_YEARS", "3"))
AMENDMENT_DUMP_MAX = int(os.environ.get("AMENDMENT_DUMP_MAX", "50000"))

# Scheduler
SCHEDULER_TZ = os.environ.get("TZ", "Europe/Paris")

# Légifrance / PISTE
LEGIFRANCE_CLIENT_ID = os.environ.get("LEGIFRANCE_CLIENT_ID")
LEGIFRANCE_CLIENT_SECRET = os.environ.get("LEGIFRANCE_CLIENT_SECRET")
LEGIFRANCE_OAUTH_URL = os.environ.get(
    "LEGIFRANCE_OAUTH_URL", "https://sandbox-oauth.piste.gouv.fr/api/oauth/token"
)
LEGIFRANCE_API_URL = os.environ.get(
    "LEGIFRANCE_API_URL",
    "https://sandbox-api.piste.gouv.fr/dila/legifrance/lf-engine-app",
)

# Upstream base URLs
AN_REPOSITORY_URL = os.environ.get(
    "AN_REPOSITORY_URL",
    "https://data.assemblee-nationale.fr/static/openData/repository",
)
SENAT_BASE_URL = os.environ.get("SENAT_BASE_URL", "https://www.senat.fr")
SENAT_DATA_URL = os.environ.get("SENAT_DATA_URL", "https://data.senat.fr/data")
DILA_DEBATS_URL = os.environ.get(
    "DILA_DEBATS_URL", "https://echanges.dila.gouv.fr/OPENDATA/Debats/AN"
)
HATVP_OPENDATA_URL = os.environ.get(
    "HATVP_OPENDATA_URL", "https://www.hatvp.fr/agora/opendata"
)
