from __future__ import annotations

import logging

import streamlit as st

from bakery.config import get_settings
from bakery.db import ensure_schema, get_conn
from bakery.services.demo_data import upsert_reference_data

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

st.set_page_config(page_title="Bakery Stock Reconciliation", page_icon="🎂", layout="wide")

st.title("🎂 Bakery Stock Reconciliation")
st.caption("Match daily outlet sales sheets against stock checks, then post sold quantities to the whole/slice ledger.")

settings = get_settings()
conn = get_conn(settings.db_path)
ensure_schema(conn)
upsert_reference_data(conn)

with st.sidebar:
    st.subheader("Environment")
    st.write(f"**Data directory:** `{settings.data_dir}`")
    st.write(f"**Database:** `{settings.db_path.name}`")

st.info(
    "Start with **🧪 Data Management** to load demo data, then upload a sheet in **Sales Upload** "
    "and review the result in **Inventory** and **Reconciliation History**.",
    icon="ℹ️",
)
