from __future__ import annotations

import os

# ---------------------------------------------------------------------------
# Languages / encoding
# ---------------------------------------------------------------------------

DEFAULT_LANGUAGE = os.getenv("PXCORE_DEFAULT_LANGUAGE", "en").strip() or "en"

# Codepage written into new PX-files. Files without CODEPAGE are read as latin-1,
# which is what PC-Axis tools produce for CHARSET="ANSI".
CODEPAGE = os.getenv("PXCORE_CODEPAGE", "utf-8").strip() or "utf-8"
LEGACY_CODEPAGE = "iso-8859-1"

# ---------------------------------------------------------------------------
# PX-file layout
# ---------------------------------------------------------------------------

AXIS_VERSION = "2013"
LINE_LENGTH = 256
MISSING_SYMBOL = ".."
MISSING_SYMBOLS = {".", "..", "...", "....", ".....", "......", "-"}

# Column of Document.data holding the measured value
FIGURES_COLUMN = "figures"

TOTAL_CODE = "Total"
TOTAL_LABEL = "Total"

# Encoding of the PX-web .vs / .agg artifacts
CLASSIFICATION_ENCODING = "utf-8"

# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

DEFAULT_THRESHOLD_PERCENT = 10.0
# Absolute slack when comparing |percent change| against the threshold
THRESHOLD_EPSILON = 1e-9
