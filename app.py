from __future__ import annotations

import streamlit as st

st.set_page_config(page_title="Bakery Stock Reconciliation", page_icon="🎂", layout="wide")

pages = [
    st.Page("home.py", title="Home", icon="🏠"),
    st.Page("pages/1_📤_Sales_Upload.py", title="Sales Upload", icon="📤"),
    st.Page("pages/2_🍳_Kitchen_Check.py", title="Kitchen Check", icon="🍳"),
    st.Page("pages/3_📦_Inventory.py", title="Inventory", icon="📦"),
    st.Page("pages/4_🕘_Reconciliation_History.py", title="Reconciliation History", icon="🕘"),
    st.Page("pages/5_🧪_Data_Management.py", title="Data Management", icon="🧪"),
]

st.navigation(pages).run()
