# Ledger Insight - Financial KPI analytics engine for double-entry ledgers
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
I/O module for Ledger Insight.

This module reads journal lines from a CSV file and normalizes them into
the structure expected by ``db.import_entries``.

Expected input formats
----------------------

Column names are case-insensitive. Two amount layouts are supported:

1) Debit / credit format
       date, code, debit, credit, ...

2) Signed amount format
       date, code, amount, ...

   ``amount`` is credit - debit: positive amounts are stored on the credit
   side, negative amounts on the debit side.

Optional text columns: protocol, annotation, description, causale,
registration_number, and explicit is_opening / is_closing flags.

Column aliases
--------------
Exports of Italian accounting packages use their own headings; they are
accepted as aliases:

    data_registrazione → date          conto        → code
    dare               → debit         avere        → credit
    protocollo         → protocol      annotazioni  → annotation
    descrizione        → description   num_registrazione → registration_number

``account`` is accepted for ``code``, ``label`` for ``description`` and
``notes`` for ``annotation``.

Output schema
-------------
    - date                (datetime64[ns])
    - code                (str)
    - debit, credit       (float, >= 0 unless credit notes are booked negative)
    - protocol, annotation, description, causale, registration_number (str)
    - is_opening, is_closing (only when present in the input)

If the CSV structure does not match one of the supported formats, a clear
ValueError is raised.
"""

import os
from typing import Union

import pandas as pd

COLUMN_ALIASES: dict[str, str] = {
    "data_registrazione": "date",
    "conto": "code",
    "account": "code",
    "dare": "debit",
    "avere": "credit",
    "protocollo": "protocol",
    "annotazioni": "annotation",
    "notes": "annotation",
    "descrizione": "description",
    "label": "description",
    "num_registrazione": "registration_number",
}

TEXT_COLUMNS: tuple[str, ...] = (
    "protocol",
    "annotation",
    "description",
    "causale",
    "registration_number",
)


def read_ledger_entries(path: Union[str, "os.PathLike[str]"]) -> pd.DataFrame:
    """
    Read ledger entries from a CSV file and normalize them.

    Parameters
    ----------
    path:
        Path to the CSV file.

    Returns
    -------
    pandas.DataFrame
        Normalized entries (see module docstring for the schema).

    Raises
    ------
    ValueError
        If required columns are missing or if numeric/date parsing fails.
    """
    # Text columns (protocols, registration numbers) must keep leading zeros.
    df = pd.read_csv(path, dtype=str, keep_default_na=False)

    df.columns = [c.lower().strip() for c in df.columns]
    renames = {
        src: dst
        for src, dst in COLUMN_ALIASES.items()
        if src in df.columns and dst not in df.columns
    }
    df = df.rename(columns=renames)
    cols = set(df.columns)

    if not {"date", "code"}.issubset(cols):
        raise ValueError(
            "Invalid ledger structure: 'date' and 'code' columns are required."
        )

    d = df.copy()

    try:
        d["date"] = pd.to_datetime(d["date"], errors="raise")
    except Exception as exc:  # noqa: BLE001
        raise ValueError("Invalid values in 'date' column.") from exc

    # ----- Case 1: debit / credit format ------------------------------------
    if {"debit", "credit"}.issubset(cols):
        for col in ("debit", "credit"):
            d[col] = pd.to_numeric(d[col].replace("", "0"), errors="coerce")
        if d[["debit", "credit"]].isna().any().any():
            raise ValueError("Invalid numeric values in 'debit'/'credit' columns.")

    # ----- Case 2: signed amount format -------------------------------------
    elif "amount" in cols:
        amount = pd.to_numeric(d["amount"], errors="coerce")
        if amount.isna().any():
            raise ValueError("Invalid numeric values in 'amount' column.")
        d["credit"] = amount.clip(lower=0.0)
        d["debit"] = (-amount).clip(lower=0.0)

    else:
        raise ValueError(
            "Invalid ledger structure. Expected either:\n"
            "  - date, code, debit, credit, ...\n"
            "  - date, code, amount, ...\n"
            "(column names are case-insensitive; Italian headings such as "
            "'dare'/'avere'/'conto' are accepted)."
        )

    d["code"] = d["code"].astype(str).str.strip()
    for col in TEXT_COLUMNS:
        if col in d.columns:
            d[col] = d[col].astype(str).str.strip()
        else:
            d[col] = ""

    out_cols = ["date", "code", "debit", "credit", *TEXT_COLUMNS]
    out_cols += [c for c in ("is_opening", "is_closing") if c in d.columns]
    return d[out_cols].reset_index(drop=True)
