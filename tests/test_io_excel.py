from __future__ import annotations

import pandas as pd
from openpyxl import load_workbook

from training_registry.io_excel import read_table, to_canonical, write_workbook


def test_to_canonical_maps_report_headers() -> None:
    df = pd.DataFrame(
        {
            "Associate Name": ["Doe, John"],
            "Requirement": ["Forklift Safety (1001)"],
            "Current Status": ["Complete"],
            "Expire Date": ["6/1/2025"],
            "Region": ["East"],
        }
    )
    result = to_canonical(df)
    assert list(result.columns) == ["associate_name", "requirement", "status", "expire_date", "Region"]


def test_to_canonical_uses_yaml_synonyms() -> None:
    result = to_canonical(pd.DataFrame({"Learner Name": ["Doe, John"], "Valid Until": ["6/1/2025"]}))
    assert result["associate_name"].tolist() == ["Doe, John"]
    assert result["expire_date"].tolist() == ["6/1/2025"]


def test_to_canonical_coalesces_duplicate_targets() -> None:
    df = pd.DataFrame(
        {"Expire Date": [None, "6/1/2025"], "Expiration Date": ["1/1/2025", "7/1/2025"], "Name": ["A", "B"]}
    )
    result = to_canonical(df)
    assert result["expire_date"].tolist() == ["1/1/2025", "6/1/2025"]


def test_read_table_detects_header_below_title(tmp_path) -> None:
    path = tmp_path / "report.xlsx"
    with pd.ExcelWriter(path, engine="openpyxl") as xw:
        pd.DataFrame([["Training export"], [None]]).to_excel(xw, index=False, header=False, startrow=0)
        pd.DataFrame(
            {"Associate Name": ["Doe, John"], "Requirement": ["Forklift Safety (1001)"], "Expire Date": ["6/1/2025"]}
        ).to_excel(xw, index=False, startrow=3)
    df, header_row = read_table(path)
    assert header_row == 3
    assert list(df.columns) == ["Associate Name", "Requirement", "Expire Date"]
    assert df.iloc[0]["Associate Name"] == "Doe, John"


def test_write_workbook_styles_and_flags(tmp_path) -> None:
    out = tmp_path / "nested" / "out.xlsx"
    write_workbook(
        {"Data": pd.DataFrame({"Match Type": ["Exact", "Not Found"]})},
        out,
        highlight={"Match Type": {"Exact": "green"}},
    )
    ws = load_workbook(out)["Data"]
    assert ws["A1"].value == "Match Type"
    assert ws["A1"].font.bold
    assert ws["A2"].fill.fgColor.rgb == "FF22C55E"
