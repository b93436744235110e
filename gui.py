"""
This module defines the graphical user interface (GUI) for the ClientLog application using Streamlit.

It includes the reusable components (client search form, client info form, client list
and client cards), the sign-in gate, and one render function per page: client lookup,
profile, visit details, add and edit client, check-in and check-out.

Every page receives the `ClientService` and the `Router` it needs instead of reaching
for globals, and navigates only after its write has completed.
"""
# gui.py

import datetime
import logging

import streamlit as st

from clientlog.auth import LocalAccountProvider, StreamlitOIDCProvider
from clientlog.errors import StoreError
from clientlog.models import (
    REQUEST_COUNT_LABELS,
    REQUEST_FLAG_LABELS,
    Client,
    Visit,
    banned_label,
    checked_in_label,
    format_birthday,
    format_visit_timestamp,
    truncate_notes,
    visit_request_lines,
    visit_request_summary,
)
from clientlog.routing import resolve_route
from clientlog.service import PageState, build_search_filter, visits_dataframe

logger = logging.getLogger("clientlog.gui")

# Constants
SKELETON_CARD_COUNT = 3
MIN_BIRTHDAY = datetime.date(1900, 1, 1)


def _parse_date(value):
    """Parses an ISO date string, returning None when it is not one."""
    try:
        return datetime.date.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def _min_birthday(value):
    """Lowest selectable birthday, widened so an older stored date stays valid."""
    return min(MIN_BIRTHDAY, value) if value else MIN_BIRTHDAY


def _show_load_failure(message):
    """Shows a load error with a button that retries the page's fetch."""
    st.error(message)
    if st.button("Retry", key="retry_load"):
        st.rerun()


# Authentication
def show_login(provider):
    """Renders the sign-in widget or the signed-in status with a sign-out button.

    The component subscribes to the identity provider for the length of the render and
    mirrors its state into `st.session_state.is_signed_in`.

    Args:
        provider: The session's `IdentityProvider`.

    Returns:
        bool: Whether a staff member is signed in.
    """
    def _track_auth_state(user):
        st.session_state.is_signed_in = user is not None

    unsubscribe = provider.on_auth_state_changed(_track_auth_state)
    try:
        if not st.session_state.is_signed_in:
            _show_sign_in_widget(provider)
        else:
            user = provider.current_user()
            st.markdown("Signed in")
            if user is not None and user.display_name:
                st.caption(user.display_name)
            if st.button("Sign-out", key="sign_out_btn", use_container_width=True):
                provider.sign_out()
                st.rerun()
            if isinstance(provider, LocalAccountProvider):
                show_pending_accounts(provider)
    finally:
        unsubscribe()
    return st.session_state.is_signed_in


def _show_sign_in_widget(provider):
    """Shows the provider-specific sign-in controls."""
    if isinstance(provider, StreamlitOIDCProvider):
        if st.button("Sign in with Google", key="oidc_sign_in_btn", type="primary", use_container_width=True):
            provider.sign_in()
        return

    if isinstance(provider, LocalAccountProvider):
        with st.form("login_form"):
            username = st.text_input("Username", key="login_username")
            password = st.text_input("Password", type="password", key="login_password")
            submitted = st.form_submit_button("Sign in", use_container_width=True)
        if submitted:
            if not username or not password:
                st.error("Username and password are required.")
            else:
                try:
                    result = provider.sign_in(username, password)
                except StoreError:
                    logger.exception("Failed to sign in %s", username)
                    st.error("Could not sign in. Please try again.")
                    return
                if result == 'pending':
                    st.warning("Your account is waiting for approval by a signed-in staff member.")
                elif result:
                    st.rerun()
                else:
                    st.error("Invalid username or password.")
        with st.expander("Create a staff account"):
            show_register_form(provider)


def show_pending_accounts(provider):
    """Lists staff accounts awaiting approval, each with an "Approve" button.

    Args:
        provider: A signed-in `LocalAccountProvider`.
    """
    try:
        pending = provider.pending_accounts()
    except StoreError:
        logger.exception("Failed to load pending staff accounts")
        st.error("Could not load pending accounts.")
        return
    if not pending:
        return
    st.markdown("**Pending staff accounts**")
    for account in pending:
        username = account["username"]
        name_col, button_col = st.columns([2, 1])
        with name_col:
            st.text(account["displayName"] or username)
        with button_col:
            if st.button("Approve", key=f"approve_{username}"):
                try:
                    approved = provider.approve(username)
                except StoreError:
                    logger.exception("Failed to approve staff account %s", username)
                    st.error("Could not approve the account. Please try again.")
                    return
                if approved:
                    st.success(f"User {username} approved.")


def show_register_form(provider):
    """Displays the staff registration form for local accounts.

    Args:
        provider: A `LocalAccountProvider`.
    """
    with st.form("register_form"):
        display_name = st.text_input("Full Name", key="register_display_name")
        username = st.text_input("Choose a Username", key="register_username")
        password = st.text_input(
            "Choose a Password",
            type="password",
            key="register_password",
            help="Use at least 8 characters with uppercase, lowercase, number, and symbol."
        )
        submitted = st.form_submit_button("Register", use_container_width=True)

    if submitted:
        if not username or not password:
            st.error("Username and password are required.")
            return
        try:
            result = provider.register(username, password, display_name)
        except StoreError:
            logger.exception("Failed to register staff account %s", username)
            st.error("Could not create the account. Please try again.")
            return
        if result == 'invalid_username':
            st.error("Usernames cannot contain \"/\" or be wrapped in double underscores.")
        elif result == 'weak_password':
            st.error("Password must be at least 8 characters and include uppercase, lowercase, number, and symbol.")
        elif result == 'pending':
            st.info(f"Account {username} created. A signed-in staff member must approve it before you can sign in.")
        elif result:
            st.success(f"Account {username} created. You can sign in now.")
        else:
            st.error(f"The username {username} is already taken.")


def show_welcome_page(org_name):
    """Displays the landing screen shown before sign-in."""
    st.title(org_name)
    st.info("Sign in from the sidebar to look up and check in clients.")


# Client search form
def show_client_search_form(on_submit, on_clear=None, initial_fields=None, router=None):
    """Renders the client lookup form.

    Args:
        on_submit (callable): Called with the filter dict built by `build_search_filter`.
        on_clear (callable, optional): Called after the fields are reset.
        initial_fields (dict, optional): A previous filter used to pre-fill the inputs.
        router (Router, optional): When given, a "New client" button links to the intake form.
    """
    initial_fields = initial_fields or {}
    # Seed widget state once; afterwards the widgets own their values.
    st.session_state.setdefault("search_first_name", initial_fields.get("firstNameLower", ""))
    st.session_state.setdefault("search_last_name", initial_fields.get("lastNameLower", ""))
    st.session_state.setdefault(
        "search_birthday", _parse_date(initial_fields.get("birthday")) or datetime.date.today()
    )
    st.session_state.setdefault("search_filter_by_birthday", bool(initial_fields.get("filterByBirthday", False)))

    def _clear_fields():
        st.session_state.search_first_name = ""
        st.session_state.search_last_name = ""
        st.session_state.search_birthday = datetime.date.today()
        st.session_state.search_filter_by_birthday = False
        if on_clear:
            on_clear()

    st.subheader("Lookup Client")
    with st.form("client_search_form"):
        col1, col2, col3 = st.columns(3)
        with col1:
            first_name = st.text_input("First name", key="search_first_name")
        with col2:
            last_name = st.text_input("Last name", key="search_last_name")
        with col3:
            birthday = st.date_input(
                "Birthday", key="search_birthday", min_value=_min_birthday(st.session_state.search_birthday)
            )
            filter_by_birthday = st.checkbox("Filter by birthday", key="search_filter_by_birthday")
        button_col1, button_col2 = st.columns(2)
        with button_col1:
            submitted = st.form_submit_button("Filter", type="primary", use_container_width=True)
        with button_col2:
            st.form_submit_button("Clear", on_click=_clear_fields, use_container_width=True)

    if router is not None and st.button("New client", key="new_client_btn"):
        router.push("/add-client")

    if submitted:
        birthday_value = birthday.isoformat() if birthday else None
        on_submit(build_search_filter(first_name, last_name, birthday_value, filter_by_birthday))


# Client info form
def show_client_info_form(service, router, client_id=None, initial_data=None, redirect="/",
                          title="Client Form", show_back_button=True):
    """Renders the form for creating or editing a client.

    Args:
        service: The `ClientService`.
        router: The `Router` used after saving.
        client_id (str, optional): The client being edited; None creates a new client.
        initial_data (Client, optional): Values to pre-fill. Defaults to an empty client
            with today's date as birthday.
        redirect (str): Route to go to after saving. Defaults to the lookup page.
        title (str): Heading shown above the form.
        show_back_button (bool): Whether to show a "Back to Profile" button.
    """
    client = initial_data or Client()
    prefix = f"client_form_{client_id or 'new'}"
    toggle_label = f"Save and check {'out' if client.is_checked_in else 'in'}"

    stored_birthday = _parse_date(client.birthday)

    st.header(title)
    if stored_birthday is None:
        st.warning(f"The stored birthday \"{client.birthday}\" is not a valid date. Enter it as YYYY-MM-DD.")

    with st.form(prefix):
        is_banned = st.checkbox("Ban", value=client.is_banned, key=f"{prefix}_is_banned")
        col1, col2, col3 = st.columns(3)
        with col1:
            first_name = st.text_input("First name", value=client.first_name, key=f"{prefix}_first_name")
            if stored_birthday is None:
                birthday_text = st.text_input("Birthday (YYYY-MM-DD)", value=client.birthday,
                                              key=f"{prefix}_birthday_text")
            else:
                birthday = st.date_input("Birthday", value=stored_birthday, min_value=_min_birthday(stored_birthday),
                                         key=f"{prefix}_birthday")
            postal_code = st.text_input("Postal code", value=client.postal_code, key=f"{prefix}_postal_code")
        with col2:
            middle_initial = st.text_input("Middle initial", value=client.middle_initial, key=f"{prefix}_middle_initial")
            gender = st.text_input("Gender", value=client.gender, key=f"{prefix}_gender")
            num_kids = st.number_input("Number of Kids", min_value=0, step=1, value=client.num_kids,
                                       key=f"{prefix}_num_kids")
        with col3:
            last_name = st.text_input("Last name", value=client.last_name, key=f"{prefix}_last_name")
            race = st.text_input("Race", value=client.race, key=f"{prefix}_race")
        notes = st.text_area("Notes", value=client.notes, height=150, key=f"{prefix}_notes")

        save_col, toggle_col = st.columns(2)
        with save_col:
            save_clicked = st.form_submit_button("Save", type="primary", use_container_width=True)
        with toggle_col:
            toggle_clicked = st.form_submit_button(toggle_label, use_container_width=True)

    if show_back_button and client_id and st.button("Back to Profile", key=f"{prefix}_back"):
        router.push(f"/profile/{client_id}")

    if not (save_clicked or toggle_clicked):
        return

    if stored_birthday is None:
        birthday = _parse_date(birthday_text.strip())
        if birthday is None:
            st.error("Birthday must be a date in the form YYYY-MM-DD.")
            return

    updated = Client(
        id=client_id,
        middle_initial=middle_initial,
        birthday=birthday.isoformat(),
        gender=gender,
        race=race,
        postal_code=postal_code,
        num_kids=int(num_kids or 0),
        notes=notes,
        is_checked_in=client.is_checked_in,
        is_banned=is_banned,
    ).with_names(first_name, last_name)

    try:
        with st.spinner("Saving client..."):
            path = service.save_client(updated, client_id=client_id, toggle_check_in=toggle_clicked, redirect=redirect)
    except StoreError:
        logger.exception("Failed to save client %s", client_id or "(new)")
        st.error("Could not save the client. Please try again.")
    else:
        router.push(path)


# Client list and cards
def show_client_card_skeleton():
    """Renders a placeholder card while clients are loading."""
    with st.container(border=True):
        st.caption("Loading client...")


def show_client_card(client, router, key_prefix="card"):
    """Renders one client summary with links to the client's pages.

    Args:
        client (Client): The client to show.
        router: The `Router` used by the action buttons.
        key_prefix (str): Distinguishes widget keys when a client appears in several lists.
    """
    key = f"{key_prefix}_{client.id}"
    with st.container(border=True):
        if st.button(client.full_name, key=f"{key}_name", type="tertiary"):
            router.push(f"/profile/{client.id}")
        if client.is_banned:
            st.error("Banned")
        st.markdown("**Birthday:**")
        st.text(format_birthday(client.birthday))
        st.markdown("**Notes:**")
        st.text(truncate_notes(client.notes))

        col1, col2, col3 = st.columns(3)
        with col1:
            if st.button("Profile", key=f"{key}_profile", use_container_width=True):
                router.push(f"/profile/{client.id}")
        with col2:
            if st.button("Edit", key=f"{key}_edit", use_container_width=True):
                router.push(f"/update/{client.id}")
        with col3:
            if client.is_checked_in:
                if st.button("Check out", key=f"{key}_checkout", use_container_width=True):
                    router.push(f"/checkout/{client.id}")
            elif st.button("Check in", key=f"{key}_checkin", use_container_width=True):
                router.push(f"/checkin/{client.id}")


def show_client_list(clients, router, no_data_message="No Clients", title=None, is_loading=False, key_prefix="list"):
    """Renders a list of client cards.

    Clients take precedence; without any, loading shows placeholder cards and anything
    else shows `no_data_message`.

    Args:
        clients (list[Client]): Clients to show.
        router: The `Router` passed to each card.
        no_data_message (str): Shown when there are no clients and nothing is loading.
        title (str, optional): Heading above the list.
        is_loading (bool): Whether the clients are still being fetched.
        key_prefix (str): Prefix for the cards' widget keys.
    """
    if title:
        st.subheader(title)
    if clients:
        for client in clients:
            show_client_card(client, router, key_prefix=key_prefix)
    elif is_loading:
        for _ in range(SKELETON_CARD_COUNT):
            show_client_card_skeleton()
    else:
        st.info(no_data_message)


def _show_fetched_client_list(fetch, router, no_data_message, title, key_prefix):
    """Shows skeleton cards until `fetch` returns, then the fetched clients."""
    placeholder = st.empty()
    with placeholder.container():
        show_client_list([], router, title=title, is_loading=True, key_prefix=key_prefix)
    try:
        clients = fetch()
    except StoreError:
        logger.exception("Failed to load clients for %s", key_prefix)
        with placeholder.container():
            if title:
                st.subheader(title)
            st.error("Could not load clients. Please try again.")
        return
    with placeholder.container():
        show_client_list(clients, router, no_data_message=no_data_message, title=title, key_prefix=key_prefix)


# Pages
def show_home_page(service, router, org_name):
    """Renders the client lookup page: search form, results and the checked-in roster."""
    st.title(org_name)

    if "client_filter" not in st.session_state:
        st.session_state.client_filter = {}

    def _apply_filter(doc_filter):
        st.session_state.client_filter = doc_filter

    def _clear_filter():
        st.session_state.client_filter = {}

    show_client_search_form(
        on_submit=_apply_filter,
        on_clear=_clear_filter,
        initial_fields=st.session_state.client_filter,
        router=router,
    )
    st.divider()

    results_col, checked_in_col = st.columns([3, 2])
    with results_col:
        doc_filter = st.session_state.client_filter
        _show_fetched_client_list(
            lambda: service.search_clients(doc_filter),
            router,
            no_data_message="No clients found",
            title="Clients",
            key_prefix="search",
        )
    with checked_in_col:
        _show_fetched_client_list(
            service.checked_in_clients,
            router,
            no_data_message="Nobody is checked in",
            title="Checked In",
            key_prefix="checked_in",
        )


def show_profile_page(service, router, user_id, visit_history_limit=10):
    """Renders a client's profile with status labels and visit history.

    Args:
        service: The `ClientService`.
        router: The `Router`; used to leave the page when the client does not exist.
        user_id (str): The client id from the route.
        visit_history_limit (int): Number of recent visits to list.
    """
    with st.spinner("Loading client..."):
        state, client = service.load_client(user_id)
    if state is PageState.NOT_FOUND:
        router.push("/")
        return
    if state is PageState.FAILED:
        _show_load_failure("Could not load this client. Please try again.")
        return

    st.header(client.display_name)
    status_col, ban_col = st.columns(2)
    with status_col:
        st.markdown(checked_in_label(client.is_checked_in))
    with ban_col:
        st.markdown(banned_label(client.is_banned))

    st.markdown(f"**Birthday:** {format_birthday(client.birthday)}")
    st.markdown(f"**Gender:** {client.gender or 'N/A'}")
    st.markdown(f"**Race:** {client.race or 'N/A'}")
    st.markdown(f"**Postal code:** {client.postal_code or 'N/A'}")
    st.markdown(f"**Number of kids:** {client.num_kids}")
    st.markdown("**Notes:**")
    st.text(client.notes or "No notes.")

    col1, col2, col3 = st.columns(3)
    with col1:
        if st.button("Edit", key="profile_edit", use_container_width=True):
            router.push(f"/update/{client.id}")
    with col2:
        if client.is_checked_in:
            if st.button("Check out", key="profile_checkout", use_container_width=True):
                router.push(f"/checkout/{client.id}")
        elif st.button("Check in", key="profile_checkin", use_container_width=True):
            router.push(f"/checkin/{client.id}")
    with col3:
        if st.button("Back to Lookup", key="profile_back", use_container_width=True):
            router.push("/")

    st.divider()
    _show_visit_history(service, router, client, visit_history_limit)


def _show_visit_history(service, router, client, limit):
    """Lists a client's recent visits with links to their details and a CSV export."""
    st.subheader("Visit History")
    try:
        visits = service.list_visits(client.id, limit=limit)
    except StoreError:
        logger.exception("Failed to load visits for client %s", client.id)
        st.error("Could not load visit history.")
        return
    if not visits:
        st.info("No visits recorded yet.")
        return

    for visit in visits:
        info_col, button_col = st.columns([4, 1])
        with info_col:
            st.markdown(f"**{format_visit_timestamp(visit.timestamp)}**")
            st.caption(visit_request_summary(visit))
        with button_col:
            if st.button("View", key=f"visit_{visit.id}"):
                router.push(f"/profile/{client.id}/visit/{visit.id}")

    visits_df = visits_dataframe(visits)
    st.download_button(
        "Download visits (CSV)", visits_df.to_csv(index=False).encode('utf-8'),
        f"visits_{client.id}_{datetime.date.today()}.csv", "text/csv"
    )


def show_visit_page(service, router, user_id, visit_id):
    """Renders the details of one visit.

    Args:
        service: The `ClientService`.
        router: The `Router`; a missing visit sends the user back to the client's profile.
        user_id (str): The client id from the route.
        visit_id (str): The visit id from the route.
    """
    with st.spinner("Loading visit..."):
        state, visit = service.load_visit(user_id, visit_id)
    if state is PageState.NOT_FOUND:
        router.push(f"/profile/{user_id}")
        return
    if state is PageState.FAILED:
        _show_load_failure("Could not load this visit. Please try again.")
        return

    st.header("Visit Details")
    st.markdown(format_visit_timestamp(visit.timestamp))
    st.subheader("Requests")
    lines = visit_request_lines(visit)
    if not lines:
        st.info("No requests were recorded for this visit.")
    for line in lines:
        st.text(line)

    if st.button("Back to Profile", key="visit_back"):
        router.push(f"/profile/{user_id}")


def show_add_client_page(service, router):
    """Renders the intake form for a new client."""
    show_client_info_form(service, router, title="New Client", redirect="/", show_back_button=False)


def show_update_page(service, router, user_id):
    """Renders the edit form for an existing client."""
    with st.spinner("Loading client..."):
        state, client = service.load_client(user_id)
    if state is PageState.NOT_FOUND:
        router.push("/")
        return
    if state is PageState.FAILED:
        _show_load_failure("Could not load this client. Please try again.")
        return
    show_client_info_form(
        service, router,
        client_id=user_id,
        initial_data=client,
        redirect=f"/profile/{user_id}",
        title="Edit Client",
    )


def show_checkin_page(service, router, user_id):
    """Renders the check-in form that records a visit and its requests."""
    with st.spinner("Loading client..."):
        state, client = service.load_client(user_id)
    if state is PageState.NOT_FOUND:
        router.push("/")
        return
    if state is PageState.FAILED:
        _show_load_failure("Could not load this client. Please try again.")
        return

    st.header(f"Check in {client.full_name}")
    if client.is_banned:
        st.warning("This client is banned.")

    with st.form(f"checkin_form_{user_id}"):
        st.markdown("**Requests**")
        flags = {}
        flag_cols = st.columns(3)
        for idx, (name, label) in enumerate(REQUEST_FLAG_LABELS):
            with flag_cols[idx % 3]:
                flags[name] = st.checkbox(label, key=f"checkin_{name}")
        counts = {}
        count_cols = st.columns(len(REQUEST_COUNT_LABELS))
        for idx, (name, label) in enumerate(REQUEST_COUNT_LABELS):
            with count_cols[idx]:
                counts[name] = st.number_input(label, min_value=0, step=1, value=0, key=f"checkin_{name}")
        household = st.text_input("Household", key="checkin_household")
        notes = st.text_area("Notes", key="checkin_notes")
        submitted = st.form_submit_button("Check in", type="primary")

    if st.button("Back to Profile", key="checkin_back"):
        router.push(f"/profile/{user_id}")

    if submitted:
        visit = Visit(
            household=household,
            notes=notes,
            flags=flags,
            counts={name: int(value or 0) for name, value in counts.items()},
        )
        try:
            with st.spinner("Checking in..."):
                service.check_in(user_id, visit)
        except (StoreError, KeyError):
            logger.exception("Failed to check in client %s", user_id)
            st.error("Could not record the visit. Please try again.")
        else:
            router.push(f"/profile/{user_id}")


def show_checkout_page(service, router, user_id):
    """Renders the check-out confirmation for a client."""
    with st.spinner("Loading client..."):
        state, client = service.load_client(user_id)
    if state is PageState.NOT_FOUND:
        router.push("/")
        return
    if state is PageState.FAILED:
        _show_load_failure("Could not load this client. Please try again.")
        return

    st.header(f"Check out {client.full_name}")
    if not client.is_checked_in:
        st.info("This client is not checked in.")

    confirm_col, back_col = st.columns(2)
    with confirm_col:
        confirmed = st.button("Confirm check out", key="checkout_confirm", type="primary", use_container_width=True)
    with back_col:
        if st.button("Back to Profile", key="checkout_back", use_container_width=True):
            router.push(f"/profile/{user_id}")

    if confirmed:
        try:
            with st.spinner("Checking out..."):
                service.check_out(user_id)
        except (StoreError, KeyError):
            logger.exception("Failed to check out client %s", user_id)
            st.error("Could not check out the client. Please try again.")
        else:
            router.push("/")


# Main Application UI
def show_main_app(service, router, config):
    """
    The main application router that displays the page matching the current route.

    Args:
        service: The `ClientService`.
        router: The `Router` holding the current path.
        config: The `AppConfig`.
    """
    with st.sidebar:
        if st.button("Client Lookup", key="nav_home", use_container_width=True):
            router.push("/")
        if st.button("New client", key="nav_add_client", use_container_width=True):
            router.push("/add-client")

    name, params = resolve_route(router.current_path())
    if name == "add_client":
        show_add_client_page(service, router)
    elif name == "profile":
        show_profile_page(service, router, params["userId"], visit_history_limit=config.visit_history_limit)
    elif name == "visit":
        show_visit_page(service, router, params["userId"], params["visitId"])
    elif name == "update":
        show_update_page(service, router, params["userId"])
    elif name == "checkin":
        show_checkin_page(service, router, params["userId"])
    elif name == "checkout":
        show_checkout_page(service, router, params["userId"])
    else:
        show_home_page(service, router, config.org_name)
