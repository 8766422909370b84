# app.py
# ------------------------------------------------------------
# CardSnap: business-card capture & contact book (Streamlit)
# ------------------------------------------------------------
import streamlit as st

from config import CONFIG
from controller import CardController
from db import CardStore
from ocr import CardExtractor
from ui import (init_session_state, push_notification, render_capture, render_cards,
                render_notifications, render_settings)


@st.cache_resource
def get_store() -> CardStore:
    return CardStore(CONFIG.db_path)


st.set_page_config(page_title="CardSnap", page_icon="📇")
st.title("📇 CardSnap")

init_session_state()
controller = CardController(
    get_store(),
    CardExtractor(CONFIG.model),
    notify=push_notification,
    session=st.session_state.session,
)

render_settings(controller)
render_capture(controller)
render_notifications(controller)
render_cards(controller)
