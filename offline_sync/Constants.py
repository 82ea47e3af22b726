# Constants.py
# Description: Shared constants for the offline sync core.
#
#######################################################################################################################

# Field every record of a resource carries as its identifier
DEFAULT_ID_FIELD = "id"

# KV store keys
OFFLINE_QUEUE_KEY = "offline_queue"
CACHE_KEY_PREFIX = "cache_"

# Connectivity probe defaults
DEFAULT_PROBE_HOST = "1.1.1.1"
DEFAULT_PROBE_PORT = 53
DEFAULT_PROBE_INTERVAL_SECONDS = 15.0
DEFAULT_PROBE_TIMEOUT_SECONDS = 3.0

#
# End of Constants.py
#######################################################################################################################
