# ui.py
import asyncio

import streamlit as st

from controller import CardController, Notification
from mirror import Session
from models import PENDING, add_tag
from view import share_text, to_frame


def run(controller: CardController, coro):
    # Streamlit は同期実行なので、バックグラウンド処理も含めて待ち切る
    async def _main():
        result = await coro
        await controller.wait_idle()
        return result
    return asyncio.run(_main())


def init_session_state():
    if "notifications" not in st.session_state: st.session_state.notifications = []
    if "undo_token" not in st.session_state: st.session_state.undo_token = None
    if "editing_id" not in st.session_state: st.session_state.editing_id = None
    if "session" not in st.session_state: st.session_state.session = None


def push_notification(n: Notification):
    st.session_state.notifications.append(n)


def render_notifications(controller: CardController):
    for n in st.session_state.notifications:
        (st.error if n.level == "error" else st.success)(n.message)
    st.session_state.notifications = []

    token = st.session_state.undo_token
    if token is not None and token.active:
        name = token.card.get("name") or "card"
        if st.button(f"↩️ Undo delete ({name})"):
            controller.undo(token)
            st.session_state.undo_token = None
            st.rerun()


def render_settings(controller: CardController):
    with st.sidebar:
        st.header("⚙️ Settings")
        stored = controller.get_credential()
        api_key = st.text_input("OpenAI API Key", value=stored or "", type="password")
        if st.button("Validate & Save") and api_key.strip():
            with st.spinner("Validating..."):
                run(controller, controller.save_credential(api_key))
            st.rerun()
        st.caption("✅ Key saved" if stored else "No key configured")

        st.divider()
        if controller.session is None:
            name = st.text_input("Name", key="login_name")
            email = st.text_input("Email", key="login_email")
            if st.button("Sign in to sync") and email:
                st.session_state.session = Session(name=name or email, email=email)
                controller.sign_in(st.session_state.session)
                st.rerun()
        else:
            st.write(f"Signed in as {controller.session.name}")
            if st.button("Sign out"):
                st.session_state.session = None
                controller.sign_out()
                st.rerun()
        st.caption(f"{len(controller.cards())} cards stored")


def render_capture(controller: CardController):
    tab1, tab2 = st.tabs(["📁 Upload", "📷 Camera"])
    with tab1:
        uploaded = st.file_uploader("Business card image", type=["png", "jpg", "jpeg", "webp"],
                                    key="card_file")
    with tab2:
        camera_img = st.camera_input("Snap a business card", key="camera_image")

    image = camera_img or uploaded
    if image is not None and st.button("🖨️ Scan card"):
        if not controller.ensure_credential():
            return
        with st.spinner("Analyzing card..."):
            run(controller, controller.capture(image))
        st.rerun()


def render_edit_form(controller: CardController, card):
    with st.form(f"edit_{card['id']}"):
        name = st.text_input("Name", card["name"] or "")
        nickname = st.text_input("Nickname", card["nickname"] or "")
        company = st.text_input("Company", card["company"] or "")
        phone = st.text_area("Phone (one per line)", "\n".join(card["phone"]))
        email = st.text_area("Email (one per line)", "\n".join(card["email"]))
        website = st.text_input("Website", card["website"] or "")
        description = st.text_area("Description", card["description"] or "")
        new_tag = st.text_input("Add tag")
        if st.form_submit_button("Save"):
            edited = {
                **card,
                "name": name or None,
                "nickname": nickname or None,
                "company": company or None,
                "phone": phone.splitlines(),
                "email": email.splitlines(),
                "website": website or None,
                "description": description or None,
            }
            if new_tag:
                edited = add_tag(edited, new_tag)
            run(controller, controller.edit(edited))
            st.session_state.editing_id = None
            st.rerun()


def render_card(controller: CardController, card):
    title = f"{card['name'] or '—'} · {card['company'] or ''}"
    if card["phase"] == PENDING:
        title = "⏳ " + title
    if card["is_syncing"]:
        title += " 🔄"
    with st.expander(title):
        cols = st.columns([1, 2])
        with cols[0]:
            if card["image_uri"]:
                st.image(card["image_uri"])
        with cols[1]:
            st.text(share_text(card))
            if card["tags"]:
                st.caption(" ".join(f"#{t}" for t in card["tags"]))
            if card["last_synced_at"]:
                st.caption(f"Synced {card['last_synced_at']}")

        notes = st.text_area("Notes", card["notes"], key=f"notes_{card['id']}")
        if notes != card["notes"]:
            controller.quick_update({**card, "notes": notes})

        b1, b2 = st.columns(2)
        if b1.button("✏️ Edit", key=f"edit_{card['id']}"):
            st.session_state.editing_id = card["id"]
        if b2.button("🗑️ Delete", key=f"delete_{card['id']}"):
            st.session_state.undo_token = controller.delete(card["id"])
            st.rerun()

        if st.session_state.editing_id == card["id"]:
            render_edit_form(controller, card)


def render_cards(controller: CardController):
    query = st.text_input("🔍 Search", key="search_term", placeholder="Name, company or tag...")
    view = controller.current_view(query)
    if not view:
        st.info("No cards yet. Snap your first business card.")
        return

    st.caption(" ".join(view))
    for letter, group in view.items():
        st.subheader(letter)
        for card in group:
            render_card(controller, card)

    with st.expander("📚 Table view"):
        st.dataframe(to_frame([c for group in view.values() for c in group]),
                     use_container_width=True)
