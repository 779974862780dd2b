from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

import streamlit as st

CONFIG_FILE_NAME = "settings.json"
ENV_DATA_DIR = "BAKERY_STOCK_DATA_DIR"


@dataclass(frozen=True)
class Settings:
    data_dir: Path
    db_path: Path


@dataclass(frozen=True)
class SalesSheetLayout:
    """Cell addresses of the POS sales export (one outlet, one day)."""

    outlet_cell: str = "J5"
    date_cell: str = "H9"
    first_row: int = 14
    last_row: int = 500
    name_col: str = "I"
    unit_col: str = "R"
    sold_col: str = "AC"


@dataclass(frozen=True)
class KitchenSheetLayout:
    """Cell addresses of the kitchen production export."""

    date_cell: str = "B7"
    outlet_cell: str = "D5"
    header_row: int = 9
    max_columns: int = 50
    first_row: int = 8
    last_row: int = 500
    name_col: str = "C"
    unit_col: str = "E"


SALES_LAYOUT = SalesSheetLayout()
KITCHEN_LAYOUT = KitchenSheetLayout()


def _default_data_dir() -> Path:
    return Path.home() / ".bakery_stock"


def _load_persisted_settings(data_dir: Path) -> dict:
    cfg = data_dir / CONFIG_FILE_NAME
    if cfg.exists():
        try:
            return json.loads(cfg.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return {}
    return {}


def persist_data_dir(data_dir_str: str) -> None:
    data_dir = Path(data_dir_str).expanduser().resolve()
    data_dir.mkdir(parents=True, exist_ok=True)

    cfg = data_dir / CONFIG_FILE_NAME
    payload = {"data_dir": str(data_dir)}
    cfg.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    st.session_state["bakery_data_dir"] = str(data_dir)


def resolve_data_dir(session_value: str | None = None) -> Path:
    # Priority order:
    # 1) Session state (set via Data Management page)
    # 2) Environment variable
    # 3) Persisted settings in default folder
    # 4) Default folder
    if session_value:
        return Path(session_value).expanduser().resolve()
    if os.getenv(ENV_DATA_DIR):
        return Path(os.getenv(ENV_DATA_DIR, "")).expanduser().resolve()
    default_dir = _default_data_dir()
    persisted = _load_persisted_settings(default_dir)
    return Path(persisted.get("data_dir", default_dir)).expanduser().resolve()


@st.cache_resource
def get_settings() -> Settings:
    data_dir = resolve_data_dir(st.session_state.get("bakery_data_dir"))
    data_dir.mkdir(parents=True, exist_ok=True)
    db_path = data_dir / "stock.db"
    return Settings(data_dir=data_dir, db_path=db_path)
