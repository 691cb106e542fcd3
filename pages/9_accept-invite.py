# pages/9_accept-invite.py
"""
✉️ Accept Invitation (public)

Opened from an invitation email: /accept-invite?token=...
The invitee sets their name and password; the account and organization
membership are created and the invitation is marked accepted.

Version: 1.0.0
"""

import logging

import streamlit as st

from utils.db import check_db_connection

from utils.sales_ops.team import MIN_PASSWORD_LENGTH, accept_invitation, resolve_invitation

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

st.set_page_config(
    page_title="Accept Invitation",
    page_icon="✉️",
    layout="centered",
    initial_sidebar_state="collapsed"
)

db_connected, db_error = check_db_connection()
if not db_connected:
    st.error(f"❌ Database connection failed: {db_error}")
    st.stop()

if st.session_state.get('invite_accepted'):
    st.success("✅ Your account is ready.")
    st.page_link("app.py", label="Go to sign in", icon="🔐")
    st.stop()

invitation, error = resolve_invitation(st.query_params.get('token'))
if invitation is None:
    st.title("✉️ Invitation")
    st.error(error)
    st.stop()

st.title(f"✉️ Join {invitation.get('organization_name') or 'the team'}")
st.caption(f"Invitation for **{invitation['email']}**")

with st.form("accept_invite_form"):
    full_name = st.text_input("Full name", value=invitation.get('closer_name') or '')
    password = st.text_input(
        "Password", type="password", help=f"At least {MIN_PASSWORD_LENGTH} characters"
    )
    confirm = st.text_input("Confirm password", type="password")
    submitted = st.form_submit_button("✅ Create account", type="primary", use_container_width=True)

if submitted:
    if password != confirm:
        st.error("❌ Passwords do not match")
    else:
        ok, message = accept_invitation(invitation, full_name, password)
        if ok:
            st.session_state['invite_accepted'] = True
            st.rerun()
        st.error(f"❌ {message}")
