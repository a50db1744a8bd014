"""Read contact files into raw records for job creation.

Every cell is read as text; empty cells become empty strings so that
normalization sees exactly what the file holds.
"""

from __future__ import annotations

import logging
from pathlib import Path

import pandas as pd

logger = logging.getLogger(__name__)


def read_contact_file(file_path: Path) -> list[dict[str, str]]:
    """Load a CSV or Excel contact export.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the extension is not supported
    """
    file_path = Path(file_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Contact file not found: {file_path}")

    suffix = file_path.suffix.lower()
    if suffix == ".csv":
        df = pd.read_csv(file_path, dtype=str, keep_default_na=False, sep=None, engine="python")
    elif suffix in (".xlsx", ".xls"):
        df = pd.read_excel(file_path, dtype=str, keep_default_na=False)
    else:
        raise ValueError(f"Unsupported file format: {file_path.suffix}")

    df.columns = [str(c).strip() for c in df.columns]
    logger.info(f"Read {len(df)} rows from {file_path}")
    return df.fillna("").to_dict(orient="records")
