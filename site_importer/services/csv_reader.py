"""CSV decoding of uploaded site spreadsheets."""
import csv
from io import StringIO
from typing import Dict, List


def decode_upload(content: bytes) -> str:
    """Decode uploaded bytes, dropping the BOM spreadsheet exports add."""
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        return content.decode("latin-1")


def read_csv_rows(csv_content: str) -> List[Dict[str, str]]:
    """
    Parse CSV content into one dict per data row.

    Header labels are stripped of surrounding whitespace; fully blank rows
    are skipped.

    Args:
        csv_content: CSV file content as string

    Returns:
        List of rows keyed by header label
    """
    reader = csv.DictReader(StringIO(csv_content))
    if reader.fieldnames:
        reader.fieldnames = [name.strip() for name in reader.fieldnames]
    return [
        row
        for row in reader
        if any(value not in (None, "") for value in row.values())
    ]
