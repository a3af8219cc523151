"""
Configuration settings for the agents package.
"""

import os
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

#==============================================================================
# MODEL CONFIGURATION
#==============================================================================

# Vision model used to locate the exterior photo on a flyer (JSON output)
GEMINI_DETECTION_MODEL = "gemini-3-flash-preview"

# Image model used to regenerate cropped photos / floor plans
GEMINI_IMAGE_MODEL = "gemini-3-pro-image-preview"

# Segmentation model (fal.ai hosted SAM-3) used for floor plans
SEGMENTATION_ENDPOINT = "fal-ai/sam-3/image"
SEGMENTATION_BASE_URL = "https://fal.run"

# Generation model tiers selectable from the request form (dev option)
MODEL_TYPES = {
    "low": "gemini-2.5-flash-lite",
    "middle": "gemini-3-flash-preview",
    "high": "gemini-3-pro-preview",
}
DEFAULT_MODEL_TYPE = "middle"

#==============================================================================
# IMAGE EXTRACTION
#==============================================================================

# Output size requested from the image model
IMAGE_SIZE = "2K"

# Property photos are regenerated as portrait images
PROPERTY_IMAGE_ASPECT_RATIO = "3:4"

# Fraction of the unit square added on every side of a detected box before cropping
CROP_PADDING = 0.03

# Segmentation candidates scoring below this are ignored
MIN_SEGMENTATION_SCORE = 0.69

# Formats the image model can ingest
SUPPORTED_IMAGE_MIME_TYPES = (
    "image/png",
    "image/jpeg",
    "image/webp",
    "image/heic",
    "image/heif",
)

#==============================================================================
# GEOSPATIAL
#==============================================================================

GOOGLE_PLACES_BASE_URL = "https://places.googleapis.com/v1"
GOOGLE_ROUTES_BASE_URL = "https://routes.googleapis.com/directions/v2"

STATION_SEARCH_RADIUS_METERS = 2000
STATION_SEARCH_MAX_RESULTS = 5
STATION_PLACE_TYPES = ["train_station", "subway_station", "transit_station"]
MAPS_LANGUAGE_CODE = "ja"
MAPS_REGION_CODE = "JP"

# Default hubs near Tokyo used when the caller supplies none
DEFAULT_MAJOR_STATIONS = [
    {"name": "東京", "latitude": 35.6812, "longitude": 139.7671},
    {"name": "渋谷", "latitude": 35.658, "longitude": 139.7016},
    {"name": "新宿", "latitude": 35.6896, "longitude": 139.7006},
    {"name": "池袋", "latitude": 35.7295, "longitude": 139.7109},
    {"name": "品川", "latitude": 35.6284, "longitude": 139.7387},
    {"name": "横浜", "latitude": 35.4657, "longitude": 139.6224},
]

#==============================================================================
# STREAMING
#==============================================================================

HEARTBEAT_INTERVAL_SECONDS = 15.0

# Buffered events above this count log a warning (the channel itself is unbounded)
EVENT_CHANNEL_WARN_THRESHOLD = 1000

# Outbound provider HTTP timeout (seconds)
PROVIDER_HTTP_TIMEOUT = 60.0

#==============================================================================
# SECRETS (environment)
#==============================================================================


def get_gemini_api_key() -> Optional[str]:
    return (
        os.getenv("GOOGLE_GENERATIVE_AI_API_KEY")
        or os.getenv("GEMINI_API_KEY")
        or os.getenv("GOOGLE_API_KEY")
    )


def get_google_maps_api_key() -> Optional[str]:
    return os.getenv("GOOGLE_MAPS_API_KEY")


def get_fal_api_key() -> Optional[str]:
    return os.getenv("FAL_KEY")


def get_session_secret() -> Optional[str]:
    return os.getenv("SESSION_SECRET")
