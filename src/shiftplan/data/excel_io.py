from __future__ import annotations

import io
import re
import unicodedata
from datetime import date, timedelta

import pandas as pd

from shiftplan.core.models import ScheduleEntry


SCHEDULE_COLUMNS = ["dia", "fecha", "sesion", "orden", "paso", "order_id"]


def read_excel_bytes(content: bytes) -> pd.DataFrame:
    """Read .xlsx bytes into a DataFrame.

    Reads the first sheet only.
    """
    bio = io.BytesIO(content)
    df = pd.read_excel(bio)
    df.columns = [str(c).strip() for c in df.columns]
    return df


def normalize_col_name(name: str) -> str:
    """Normalize Excel column names to an ASCII-ish snake_case token.

    Handles accents, non-breaking spaces, tabs, and punctuation.
    """

    s = str(name or "").strip().lower()
    s = unicodedata.normalize("NFKD", s)
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    s = s.replace("\u00a0", " ")
    s = re.sub(r"[\s\t]+", " ", s)
    s = re.sub(r"[^a-z0-9 ]+", " ", s)
    s = re.sub(r"\s+", "_", s).strip("_")
    return s


def normalize_columns(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [normalize_col_name(c) for c in df.columns]
    return df


_DIGITS_RE = re.compile(r"^\d+$")


def parse_int_strict(value, *, field: str) -> int:
    """Parse an integer cell.

    Accepts ints, floats like 3.0, and digit-only strings.
    Raises ValueError otherwise.
    """
    if value is None:
        raise ValueError(f"{field} vacío")

    if isinstance(value, bool):
        raise ValueError(f"{field} inválido: {value!r}")

    if isinstance(value, int):
        return int(value)

    if isinstance(value, float):
        if pd.isna(value):
            raise ValueError(f"{field} vacío")
        if float(value).is_integer():
            return int(value)
        raise ValueError(f"{field} inválido (no entero): {value!r}")

    s = str(value).strip()
    if not s:
        raise ValueError(f"{field} vacío")
    if _DIGITS_RE.match(s):
        return int(s)

    raise ValueError(f"{field} inválido: {value!r}")


def parse_steps(value) -> dict[str, int]:
    """Parse a steps cell like ``"A:2; B:1"`` into an ordered mapping.

    Separators ``;`` or ``,``; step names are upper-cased like the intake form.
    """
    s = str(value or "").strip()
    if not s or s.lower() == "nan":
        raise ValueError("pasos vacío")
    steps: dict[str, int] = {}
    for chunk in re.split(r"[;,]", s):
        chunk = chunk.strip()
        if not chunk:
            continue
        if ":" not in chunk:
            raise ValueError(f"paso inválido (esperado NOMBRE:DURACION): {chunk!r}")
        name, _, dur = chunk.partition(":")
        name = name.strip().upper()
        if not name:
            raise ValueError(f"paso sin nombre: {chunk!r}")
        if name in steps:
            raise ValueError(f"paso repetido: {name}")
        steps[name] = parse_int_strict(dur.strip(), field=f"duración {name}")
    if not steps:
        raise ValueError("pasos vacío")
    return steps


def read_orders_excel_bytes(content: bytes) -> list[dict]:
    """Parse an order intake sheet.

    Required columns (any case/accents): nombre, cantidad, plazo, pasos.
    Optional: color.
    """
    df = normalize_columns(read_excel_bytes(content))
    required = {"nombre", "cantidad", "plazo", "pasos"}
    missing = required - set(df.columns)
    if missing:
        raise ValueError(f"Faltan columnas: {', '.join(sorted(missing))}")

    out: list[dict] = []
    for idx, row in df.iterrows():
        # +2: header row and 1-based Excel numbering
        excel_row = int(idx) + 2
        name = str(row.get("nombre") if row.get("nombre") is not None else "").strip()
        if not name or name.lower() == "nan":
            continue
        try:
            color = row.get("color")
            out.append(
                {
                    "name": name,
                    "quantity": parse_int_strict(row.get("cantidad"), field="cantidad"),
                    "deadline": parse_int_strict(row.get("plazo"), field="plazo"),
                    "steps": parse_steps(row.get("pasos")),
                    "color": None if color is None or pd.isna(color) else str(color).strip(),
                }
            )
        except ValueError as ex:
            raise ValueError(f"Fila {excel_row}: {ex}") from ex
    return out


def schedule_to_dataframe(entries: list[ScheduleEntry], *, start_date: date) -> pd.DataFrame:
    rows = [
        {
            "dia": e.day,
            "fecha": (start_date + timedelta(days=e.day - 1)).isoformat(),
            "sesion": e.session,
            "orden": e.order_name,
            "paso": e.step,
            "order_id": e.order_id,
        }
        for e in entries
    ]
    df = pd.DataFrame(rows, columns=SCHEDULE_COLUMNS)
    if not df.empty:
        df = df.sort_values(["dia", "sesion"], kind="stable").reset_index(drop=True)
    return df


def export_schedule_csv_bytes(entries: list[ScheduleEntry], *, start_date: date) -> bytes:
    return schedule_to_dataframe(entries, start_date=start_date).to_csv(index=False).encode("utf-8")


def export_schedule_xlsx_bytes(entries: list[ScheduleEntry], *, start_date: date) -> bytes:
    bio = io.BytesIO()
    schedule_to_dataframe(entries, start_date=start_date).to_excel(
        bio, index=False, sheet_name="Programa", engine="openpyxl"
    )
    return bio.getvalue()
