import os

# Use litellm's bundled model cost map instead of fetching it over the network
# in a background thread at import time (which can deadlock test collection offline).
os.environ.setdefault("LITELLM_LOCAL_MODEL_COST_MAP", "True")
