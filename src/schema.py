# src/schema.py

# ---------- Camera-trap count table ----------
SITE_COL = "Site_Name"
CAMERA_COL = "Camera"
CAMERA_ID_COL = "Camera_ID"
TOTAL_COL = "Total_Counts"

# Species count columns in the raw count matrix
SPECIES_COLS = ["Grouse", "Rabbit", "Rattlesnake", "Falcon"]

# Identifier columns (everything else in the count matrix is an animal)
COUNT_ID_COLS = [SITE_COL, CAMERA_COL, CAMERA_ID_COL]

# ---------- Camera metadata ----------
LAB_MEMBER_COL = "Lab_Member"
DATE_COL = "Date"

# ---------- Long (tidy) table ----------
ANIMAL_COL = "Animal"
COUNT_COL = "Animal_Counts"
SCINAME_COL = "Scientific_Name"
OCCUPANCY_COL = "Relative_Occupancy"
PRETTY_DATE_COL = "PrettyDate"
MEAN_OCCUPANCY_COL = "Occupancy"

# ---------- Species presence / absence ----------
SITE_ID_COL = "id"
X_COL = "x"                 # projected easting (m)
Y_COL = "y"                 # projected northing (m)
YEAR_COL = "Year"
PRESENCE_COLS = ["heth", "eame"]   # Hermit Thrush, Eastern Meadowlark
TARGET_SPECIES = "heth"

# Coordinate column names written by older spatial exports
COORD_ALIASES = {"coords.x1": X_COL, "coords.x2": Y_COL}

# ---------- Land cover ----------
LEGEND_VALUE_COL = "Value"
LEGEND_LABEL_COL = "Legend"
COVER_ID_COL = "cover_id"
COVER_LABEL_COL = "cover_label"
PROPORTION_COL = "proportion"
OTHER_COL = "Other"

# ---------- Climate ----------
MINT_COL = "MinT"
RAIN_COL = "Rain"

# ---------- Daymet ----------
DAYMET_SITE_COL = "site"
LAT_COL = "latitude"        # degrees
LON_COL = "longitude"       # degrees

# Basic sanity bounds (used for validation)
LAT_MIN, LAT_MAX = -90.0, 90.0
LON_MIN, LON_MAX = -180.0, 180.0
