from app.core.config import PUBLISH_INTERVAL_SECONDS

# --------------------------------------------------
# DISTANCE
# --------------------------------------------------

EARTH_RADIUS_KM = 6371.0

# --------------------------------------------------
# VENDOR PUBLISHER
# --------------------------------------------------

# Seconds between two upserts of the latest sampled position
PUBLISH_INTERVAL = PUBLISH_INTERVAL_SECONDS

# Continuous watch on the vendor device
WATCH_HIGH_ACCURACY = True
WATCH_TIMEOUT_SECONDS = 10
WATCH_MAXIMUM_AGE_SECONDS = 0

# --------------------------------------------------
# CUSTOMER VIEW
# --------------------------------------------------

# One-shot fix requested when a customer view mounts
ONE_SHOT_HIGH_ACCURACY = True
ONE_SHOT_TIMEOUT_SECONDS = 5
ONE_SHOT_MAXIMUM_AGE_SECONDS = 0

# --------------------------------------------------
# STALENESS
# --------------------------------------------------

# A live record this many missed publish ticks old is no longer shown as live
STALE_AFTER_MISSED_TICKS = 3
STALE_AFTER_SECONDS = PUBLISH_INTERVAL * STALE_AFTER_MISSED_TICKS

# --------------------------------------------------
# DIRECTORY
# --------------------------------------------------

DEFAULT_VENDOR_RATING = 4.5
UNNAMED_VENDOR = "Unnamed Vendor"
