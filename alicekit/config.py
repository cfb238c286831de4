import os

# Text encoding used by game data (names, EX strings). Decoded to str at load time.
INPUT_ENCODING = os.environ.get("ALICEKIT_INPUT_ENCODING", "cp932")

# Default target for image transcoding during extraction: "png" or "webp"
IMAGE_FORMAT = os.environ.get("ALICEKIT_IMAGE_FORMAT", "png").lower()

# TOC names and --name lookups ignore case unless this is set
TOC_CASE_SENSITIVE = os.environ.get("ALICEKIT_TOC_CASE_SENSITIVE", "0") not in ("", "0", "false", "no")

# Maximum nesting of EX values (tables/lists/trees) before parsing gives up
MAX_EX_DEPTH = int(os.environ.get("ALICEKIT_MAX_EX_DEPTH", "256"))

# WEBP quality used when transcoding
WEBP_QUALITY = int(os.environ.get("ALICEKIT_WEBP_QUALITY", "90"))

LOG_LEVEL = os.environ.get("ALICEKIT_LOG_LEVEL", "WARNING").upper()
