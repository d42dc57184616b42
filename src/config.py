# src/config.py
import os
from pathlib import Path

# ---------- Paths ----------
ROOT = Path(__file__).resolve().parents[1]
DATA_DIR = Path(os.environ.get("ECOCAM_DATA_DIR", ROOT / "data"))
WORKSPACE_DIR = DATA_DIR / "workspaces"
FIGURE_DIR = DATA_DIR / "figures"

LOG_LEVEL = os.environ.get("ECOCAM_LOG_LEVEL", "INFO")

# ---------- Stage 1 (Camera-trap cleaning) ----------
OUTLIER_THRESHOLD = 1000   # counts above this are data-entry errors
CAMERA_ID_SEP = "_"
EXCLUDED_CAMERAS = ()      # extra Camera_IDs to drop on top of flagged ones

# ---------- Stage 2 (Transformation) ----------
SCIENTIFIC_NAMES = {
    "Grouse": "Centrocerus urophasianus",
    "Rabbit": "Brachylagus idahoensis",
    "Rattlesnake": "Crotalus oreganus",
    "Falcon": "Falco peregrinus",
}
OCCUPANCY_TOLERANCE = 1e-9

# ---------- Stage 3 (Spatial) ----------
SITE_EPSG = 3071           # NAD83(HARN) / Wisconsin Transverse Mercator
GEOGRAPHIC_EPSG = 4326
LANDCOVER_BUFFER_M = 35.0  # slightly more than one 30 m NLCD cell
OTHER_COVER_CLASSES = ["Open Water", "Barren Land", "Evergreen Forest", "Mixed Forest"]
BACKGROUND_SEED = 42

# PRISM 30-year normals (June-July)
PRISM_URL = "https://services.nacse.org/prism/data/public/normals"
PRISM_RESOLUTION = "800m"
PRISM_MONTHS = (6, 7)

# Daymet single-pixel service
DAYMET_URL = "https://daymet.ornl.gov/single-pixel/api/data"
DAYMET_VARS = ("tmax", "tmin", "prcp")
HTTP_TIMEOUT = 60
USER_AGENT = "ecocam-sdm/0.1 (teaching pipeline)"

# ---------- Stage 4 (SDM) ----------
SDM_METHODS = ("glm", "rf", "brt")
TEST_ROWS_DEFAULT = 1000
RANDOM_STATE = 42
RF_TREES = 500
BRT_TREES = 300
PERMUTATION_REPEATS = 5

# ---------- Plots ----------
BASE_FONT_SIZE = 15
FIGURE_WIDTH_IN = 5
FIGURE_HEIGHT_IN = 4
FIGURE_DPI = 500

# Fixed palette for sites / species (feel free to expand)
PALETTE = [
    "#2A9D8F", "#E76F51", "#264653", "#F4A261", "#8AB17D",
    "#577590", "#FF9F1C", "#3D5A80", "#43AA8B", "#B56576"
]
