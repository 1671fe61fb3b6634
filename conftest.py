"""Pytest configuration for krsp tests.

Global warning filters shared by every test directory.
"""

import warnings

# ConnectionConfig.schema names the KRSP database and shadows BaseModel.schema
warnings.filterwarnings(
    "ignore",
    message=r".*Field name \"schema\" in \"ConnectionConfig\" shadows an attribute.*",
    category=UserWarning,
)
