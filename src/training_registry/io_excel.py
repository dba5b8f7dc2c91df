from __future__ import annotations

from pathlib import Path
from typing import BinaryIO, Dict, Literal, Mapping, Optional, Tuple

import pandas as pd

from .field_map import get_header_map, _norm_token

# Fill colours (ARGB) used to flag cells in generated workbooks
FILL_COLOURS = {
    "header": "FF1F4788",
    "green": "FF22C55E",
    "purple": "FF8B5CF6",
    "orange": "FFFFA500",
    "red": "FFEF4444",
    "gray": "FF6B7280",
}


def _engine_for(path: Path) -> Literal["openpyxl", "xlrd"]:
    suffix = path.suffix.lower()
    if suffix in (".xlsx", ".xlsm", ".xltx", ".xltm"):
        return "openpyxl"
    return "xlrd"


def is_excel(path: Path) -> bool:
    return path.suffix.lower() in (".xls", ".xlsx", ".xlsm", ".xltx", ".xltm")


def read_csv_robust(path: Path, **kwargs) -> pd.DataFrame:
    """Read CSV with tolerant encoding handling (UTF-8/UTF-8-SIG/CP1252)."""
    encodings = ["utf-8", "utf-8-sig", "cp1252", "latin-1"]
    with path.open("rb") as f:
        head = f.read(4)
    if head.startswith(b"\xef\xbb\xbf"):
        encodings = ["utf-8-sig", "utf-8", "cp1252", "latin-1"]
    last_err: Exception | None = None
    for enc in encodings:
        try:
            return pd.read_csv(path, encoding=enc, **kwargs)
        except UnicodeDecodeError as e:
            last_err = e
            continue
    assert last_err is not None
    raise last_err


def _detect_header_row(df: pd.DataFrame) -> Optional[int]:
    """Find the first row carrying at least two known report headers."""
    header_map = get_header_map()
    for i in range(min(20, len(df))):
        values = [str(v).strip() for v in df.iloc[i].tolist() if pd.notna(v)]
        hit = sum(1 for v in values if v in header_map or _norm_token(v) in header_map)
        if hit >= 2:
            return i
    return None


def read_table(
    path: Path,
    sheet_name: str | int | None = None,
    header_row_override: int | None = None,
) -> Tuple[pd.DataFrame, int]:
    """Read a CSV or Excel report as strings, locating its header row.

    Returns the frame (header applied, empty rows/columns dropped) and the
    0-based header row index within the source.
    """
    if is_excel(path):
        sheet = 0 if sheet_name is None else sheet_name
        probe = pd.read_excel(path, sheet_name=sheet, header=None, dtype="object", engine=_engine_for(path))  # type: ignore[call-overload]
    else:
        probe = read_csv_robust(path, header=None, dtype=str, keep_default_na=False)

    if header_row_override is not None:
        header_row = header_row_override
    else:
        detected = _detect_header_row(probe)
        if detected is None:
            counts = probe.replace("", pd.NA).notna().sum(axis=1)
            nz = counts[counts > 0]
            detected = int(nz.index.min()) if not nz.empty else 0
        header_row = detected

    if header_row >= len(probe):
        return pd.DataFrame(), header_row

    headers = [str(c).strip() if pd.notna(c) else "" for c in probe.iloc[header_row].tolist()]
    body = probe.iloc[header_row + 1 :].reset_index(drop=True)
    body.columns = [h or f"Unnamed: {i}" for i, h in enumerate(headers)]
    body = body.replace("", pd.NA)
    body = body.dropna(axis=1, how="all").dropna(axis=0, how="all").reset_index(drop=True)
    return body, header_row


def to_canonical(df: pd.DataFrame) -> pd.DataFrame:
    """Rename report headers to canonical snake_case names.

    Unmapped columns keep their labels. When several source columns map to the
    same name they are coalesced left-to-right.
    """
    header_map = get_header_map()
    mapped: Dict[str, str] = {}
    for col in df.columns:
        raw = str(col).strip()
        key = header_map.get(raw) or header_map.get(_norm_token(raw))
        mapped[col] = key or raw
    out = df.rename(columns=mapped)
    if out.columns.duplicated().any():
        merged = {}
        for name in dict.fromkeys(out.columns):
            cols = out.loc[:, out.columns == name]
            merged[name] = cols.bfill(axis=1).iloc[:, 0] if cols.shape[1] > 1 else cols.iloc[:, 0]
        out = pd.DataFrame(merged)
    return out


def _style_sheet(ws, highlight: Mapping[str, Mapping[str, str]] | None) -> None:
    from openpyxl.styles import Alignment, Font, PatternFill
    from openpyxl.utils import get_column_letter

    header_fill = PatternFill(fill_type="solid", fgColor=FILL_COLOURS["header"])
    for cell in ws[1]:
        cell.font = Font(bold=True, color="FFFFFFFF")
        cell.fill = header_fill
        cell.alignment = Alignment(vertical="center", horizontal="center")

    headers = [c.value for c in ws[1]]
    for idx, label in enumerate(headers, start=1):
        width = len(str(label or ""))
        for (value,) in ws.iter_rows(min_row=2, min_col=idx, max_col=idx, values_only=True):
            width = max(width, len(str(value)) if value is not None else 0)
        ws.column_dimensions[get_column_letter(idx)].width = min(max(width + 2, 10), 70)

    if not highlight:
        return
    for col_name, colours in highlight.items():
        if col_name not in headers:
            continue
        col_idx = headers.index(col_name) + 1
        for row in ws.iter_rows(min_row=2, min_col=col_idx, max_col=col_idx):
            cell = row[0]
            colour = colours.get(str(cell.value))
            if colour:
                cell.fill = PatternFill(fill_type="solid", fgColor=FILL_COLOURS.get(colour, colour))
                cell.font = Font(bold=True, color="FFFFFFFF")


def write_workbook(
    sheets: Mapping[str, pd.DataFrame],
    out_path: Path | BinaryIO,
    highlight: Mapping[str, Mapping[str, str]] | None = None,
) -> Path | BinaryIO:
    """Write several frames to one styled XLSX (bold header, widths, colour flags).

    ``out_path`` may also be a binary buffer, for HTTP downloads.
    """
    if isinstance(out_path, (str, Path)):
        out_path = Path(out_path)
        out_path.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(out_path, engine="openpyxl") as xw:
        for name, frame in sheets.items():
            frame.to_excel(xw, sheet_name=name[:31], index=False)
            _style_sheet(xw.sheets[name[:31]], highlight)
    return out_path


def write_xlsx(df: pd.DataFrame, out_path: Path) -> None:
    write_workbook({"Sheet1": df}, out_path)


def write_csv(df: pd.DataFrame, out_path: Path) -> None:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(out_path, index=False, encoding="utf-8-sig")


__all__ = [
    "read_csv_robust",
    "read_table",
    "to_canonical",
    "write_workbook",
    "write_xlsx",
    "write_csv",
    "is_excel",
    "FILL_COLOURS",
]
