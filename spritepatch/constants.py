NORMALIZED_SPAN = 1000.0

SUPPORTED_EXTENSIONS = {".png", ".webp", ".gif", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff"}

# Template pixels at or below this alpha are ignored when scoring a match.
ALPHA_THRESHOLD = 40
SAMPLE_STRIDE = 2
YIELD_EVERY_ROWS = 50

# Heuristic scanner
SCAN_BASE_WIDTH = 1000
SCAN_ALPHA_THRESHOLD = 20
SCAN_MIN_ROW_DENSITY = 10
SCAN_TOP_FRACTION = 0.4
DEFAULT_FACE_RECT = (350.0, 150.0, 300.0, 300.0)

EXPORT_FORMATS = {"png": "PNG", "jpg": "JPEG", "jpeg": "JPEG", "webp": "WEBP"}
DEFAULT_EXPORT_PREFIX = "sprite_export"
DEFAULT_EXPORT_DELAY_S = 0.3

DETECTOR_API_KEY_ENVS = ("GEMINI_API_KEY", "API_KEY")
DEFAULT_DETECTOR_MODEL = "gemini-2.5-pro"
