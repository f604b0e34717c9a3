"""
TravelBuddy Console

Deal discovery for travellers and the admin back office, in one Streamlit app.

The deals page ranks whatever the API returns entirely in memory, the admin
pages load one tab at a time and every table on them shares the same
sort / paginate / select / export behaviour.
"""

import logging
from datetime import datetime

import pandas as pd
import plotly.express as px
import streamlit as st

import settings
from admin_loaders import ADMIN_TABS, Failed, Loaded, Loading, build_admin_loaders
from admin_tables import DEAL_COLUMNS, ROW_ACTIONS, AdminActions, build_table
from api_client import AdminClient, ApiError, DealsClient, SessionExpiredError
from data_table import PAGE_SIZE_OPTIONS, DataTable
from deal_ranking import (
    SORT_KEYS,
    FeaturedDealPicker,
    FilterOptions,
    annotate_distances,
    category_options,
    count_new_deals,
    filter_and_sort,
    live_deals,
    parse_discount_percent,
    recommended_slice,
    trending_score,
)
from preferences import (
    FILTER_DEFAULTS,
    FILTER_DRAFT,
    SQLiteStore,
    discard_draft,
    get_language,
    record_deals_visit,
    restore_filters,
    save_filters,
    set_language,
)
from session_timer import ActivityEmitter, SessionConfig, SessionTimer, format_time

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


st.set_page_config(
    page_title="TravelBuddy Console",
    page_icon="🧭",
    layout="wide",
    initial_sidebar_state="expanded"
)

SORT_LABELS = {
    "trending": "🔥 Trending",
    "discount": "💸 Biggest discount",
    "newest": "🆕 Newest",
    "expiring": "⏰ Ending soon",
    "distance": "📍 Nearest",
}

LANGUAGES = {"en": "English", "si": "සිංහල", "ta": "தமிழ்"}

SESSION_EXPIRED_MESSAGE = "Session expired. Please login again."


# SESSION STATE INITIALIZATION
# NOTE: everything the app keeps between reruns is created here once, so nothing is re-queried on a rerun.

if 'store' not in st.session_state:
    st.session_state.store = SQLiteStore()
if 'previous_visit' not in st.session_state:
    st.session_state.previous_visit = None

# Deals page filters, restored from the last saved draft
if 'search_term' not in st.session_state:
    for filter_key, filter_value in restore_filters(st.session_state.store).items():
        st.session_state[filter_key] = filter_value

# Admin console
if 'authenticated' not in st.session_state:
    st.session_state.authenticated = False
    st.session_state.admin_error = ""
    st.session_state.admin_client = None
    st.session_state.loaders = None
    st.session_state.session_timer = None
    st.session_state.tables = {}
if 'activity' not in st.session_state:
    st.session_state.activity = ActivityEmitter()
if 'user_search' not in st.session_state:
    st.session_state.user_search = ""


@st.cache_data(ttl=300)
def load_deals(api_url: str):
    """Active deals from the API, cached for five minutes."""
    return DealsClient(base_url=api_url).list_deals()


# ===== SHARED TABLE RENDERER =====

def render_data_table(table: DataTable, key: str, row_actions=()):
    """Draw a DataTable: controls, sortable headers, selectable rows, row actions, pagination."""

    def _on_page_size():
        table.set_page_size(st.session_state[f"{key}_page_size"])

    def _on_columns():
        table.set_visible_columns(st.session_state[f"{key}_columns"])

    def _on_bulk():
        value = st.session_state[f"{key}_bulk"]
        st.session_state[f"{key}_bulk"] = ""
        if value:
            run_admin_action(lambda: table.apply_bulk_action(value))

    control_col1, control_col2, control_col3, control_col4 = st.columns([2, 1, 3, 1])

    with control_col1:
        if table.show_bulk_actions:
            labels = {action.value: action.label for action in table.bulk_actions}
            st.selectbox(
                f"Bulk Actions ({len(table.selected_keys)})",
                options=[""] + list(labels),
                format_func=lambda value: labels.get(value, "Choose an action..."),
                key=f"{key}_bulk",
                on_change=_on_bulk,
            )

    with control_col2:
        st.selectbox(
            "Per page",
            options=PAGE_SIZE_OPTIONS,
            index=PAGE_SIZE_OPTIONS.index(table.page_size) if table.page_size in PAGE_SIZE_OPTIONS else 1,
            key=f"{key}_page_size",
            on_change=_on_page_size,
        )

    with control_col3:
        labels = {column.key: column.label for column in table.columns}
        st.multiselect(
            "Columns",
            options=list(labels),
            default=[column.key for column in table.visible_columns],
            format_func=lambda column_key: labels[column_key],
            key=f"{key}_columns",
            on_change=_on_columns,
        )

    with control_col4:
        export = table.export_csv()
        st.download_button(
            label="📥 Export CSV",
            data=export.content,
            file_name=export.filename,
            mime=export.mime,
            key=f"{key}_export",
            use_container_width=True
        )

    # Sortable headers
    visible = table.visible_columns
    if visible:
        header_cols = st.columns(len(visible))
        for header_col, column in zip(header_cols, visible):
            with header_col:
                if column.sortable:
                    if st.button(f"{column.label} {table.sort_indicator(column.key)}".strip(), key=f"{key}_sort_{column.key}"):
                        table.sort_by(column.key)
                        st.rerun()
                else:
                    st.markdown(f"**{column.label}**")

    frame = table.page_frame()
    page_rows = table.page_rows
    page_keys = [table.key_of(row) for row in page_rows]

    if table.bulk_actions:
        if st.button("☑️ Select page / clear", key=f"{key}_select_all"):
            table.toggle_all()
            st.rerun()

        frame.insert(0, "✓", [table.is_selected(row_key) for row_key in page_keys])
        # NOTE: the editor key changes with page, sort and selection so stale checkbox edits never replay.
        editor_key = f"{key}_editor_{table.current_page}_{table.sort_key}_{table.sort_order}_{len(table.selected_keys)}"
        edited = st.data_editor(
            frame,
            hide_index=True,
            disabled=[column for column in frame.columns if column != "✓"],
            key=editor_key,
            use_container_width=True
        )
        changed = False
        for row_key, checked in zip(page_keys, edited["✓"].tolist()):
            if bool(checked) != table.is_selected(row_key):
                table.toggle_row(row_key)
                changed = True
        if changed:
            st.rerun()
    else:
        st.dataframe(frame, hide_index=True, use_container_width=True)

    if row_actions and page_rows:
        with st.expander("⚙️ Row actions", expanded=False):
            first = visible[0] if visible else table.columns[0]
            choice = st.selectbox(
                "Row",
                options=list(range(len(page_rows))),
                format_func=lambda i: str(table.cell(page_rows[i], first)),
                key=f"{key}_row_choice",
            )
            action_cols = st.columns(len(row_actions))
            for action_col, (label, action) in zip(action_cols, row_actions):
                with action_col:
                    if st.button(label, key=f"{key}_row_{action}", use_container_width=True):
                        run_admin_action(lambda: table.row_action(action, page_rows[choice]))
                        st.rerun()

    first_row, last_row, total = table.showing_range()
    nav_col1, nav_col2, nav_col3, nav_col4 = st.columns([3, 1, 1, 1])
    with nav_col1:
        st.caption(f"Showing {first_row} to {last_row} of {total}")
    with nav_col2:
        if st.button("Previous", key=f"{key}_prev", disabled=table.current_page == 1):
            table.previous_page()
            st.rerun()
    with nav_col3:
        st.write(f"Page {table.current_page} of {table.total_pages}")
    with nav_col4:
        if st.button("Next", key=f"{key}_next", disabled=table.current_page == table.total_pages):
            table.next_page()
            st.rerun()


# ===== DEALS PAGE =====

def render_deal_card(deal, client: DealsClient, key: str):
    st.markdown(f"**{deal.get('title', 'Untitled deal')}**")
    st.caption(f"{deal.get('businessName', '')} · {deal.get('businessType', '')}")
    st.markdown(f"### {deal.get('discount', '')}")
    if deal.get('distance') is not None:
        st.caption(f"📍 {deal['distance']:.1f} km away")
    st.caption(f"👁️ {deal.get('views', 0)} views · 🎟️ {deal.get('claims', 0)} claims")

    view_col, claim_col = st.columns(2)
    with view_col:
        if st.button("View", key=f"view_{key}", use_container_width=True):
            try:
                client.view_deal(deal['_id'])
                load_deals.clear()
            except ApiError as exc:
                st.error(f"Could not record view: {exc}")
    with claim_col:
        if st.button("Claim", key=f"claim_{key}", use_container_width=True):
            try:
                client.claim_deal(deal['_id'])
                load_deals.clear()
                st.success("Deal claimed!")
            except ApiError as exc:
                st.error(f"Could not claim deal: {exc}")


def reset_filters():
    discard_draft(st.session_state.store, FILTER_DRAFT)
    st.session_state.update(FILTER_DEFAULTS)


def deals_page():
    st.title("🧭 Travel Deals")
    client = DealsClient()

    try:
        deals = load_deals(settings.API_URL)
    except ApiError as exc:
        st.error(f"Could not load deals: {exc}")
        st.stop()

    # NOTE: the visit is stamped once per browser session, the previous stamp drives the "new" badge.
    if st.session_state.previous_visit is None:
        st.session_state.previous_visit = record_deals_visit(st.session_state.store) or 0
    new_count = count_new_deals(deals, st.session_state.previous_visit)
    deals = live_deals(deals)
    if st.session_state.sort_key not in SORT_KEYS:
        st.session_state.sort_key = "trending"

    with st.expander("🔍 **Search & Filter Deals**", expanded=True):
        filter_col1, filter_col2, filter_col3 = st.columns(3)
        with filter_col1:
            st.text_input(
                "🔎 Search",
                placeholder="e.g., beach resort, sushi, diving...",
                help="Matches title, business name and description",
                key="search_term",
            )
        with filter_col2:
            options = category_options(deals)
            if st.session_state.category not in options:
                st.session_state.category = "all"
            st.selectbox("📂 Category", options=options, format_func=lambda c: c.title(), key="category")
        with filter_col3:
            st.selectbox("↕️ Sort by", options=SORT_KEYS, format_func=lambda k: SORT_LABELS[k], key="sort_key")

        user_location = None
        if st.checkbox("📍 Use my location", key="use_location"):
            lat_col, lng_col = st.columns(2)
            with lat_col:
                lat = st.number_input("Latitude", value=6.9271, format="%.4f", key="user_lat")
            with lng_col:
                lng = st.number_input("Longitude", value=79.8612, format="%.4f", key="user_lng")
            user_location = (lat, lng)
            deals = annotate_distances(deals, user_location)

        st.button("↩️ Reset filters", on_click=reset_filters)

    save_filters(st.session_state.store, {
        "search_term": st.session_state.search_term,
        "category": st.session_state.category,
        "sort_key": st.session_state.sort_key,
    })

    ranked = filter_and_sort(
        deals,
        FilterOptions(
            search_term=st.session_state.search_term,
            category=st.session_state.category,
            sort_key=st.session_state.sort_key,
            user_location=user_location,
        ),
    )

    # At a glance
    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("🎯 Live Deals", f"{len(deals):,}")
    with col2:
        st.metric("🆕 New Since Last Visit", f"{new_count:,}")
    with col3:
        st.metric("🎟️ Total Claims", f"{sum(int(d.get('claims') or 0) for d in ranked):,}")
    with col4:
        discounts = [p for p in (parse_discount_percent(d.get('discount')) for d in ranked) if p is not None]
        st.metric("💸 Avg Discount", f"{sum(discounts) / len(discounts):.0f}%" if discounts else "N/A")

    st.info(f"📊 **{len(ranked)} deals** match your filters (from {len(deals)} live)")

    if not ranked:
        st.warning("No deals match your current filters.")
        return

    # Featured pick stays put for the session, even when the filters change.
    picker = FeaturedDealPicker(st.session_state)
    featured = picker.pick(ranked)
    st.markdown("---")
    feature_col, pick_col = st.columns([5, 1])
    with feature_col:
        st.subheader("⭐ Featured Deal")
    with pick_col:
        if st.button("🔄 New pick", use_container_width=True):
            picker.clear()
            st.rerun()
    if featured:
        render_deal_card(featured, client, "featured")

    st.markdown("---")
    st.subheader("✨ Recommended For You")
    picks = recommended_slice(ranked, featured)
    for start in range(0, len(picks), 3):
        card_cols = st.columns(3)
        for card_col, deal in zip(card_cols, picks[start:start + 3]):
            with card_col:
                render_deal_card(deal, client, f"rec_{deal.get('_id')}")

    st.markdown("---")
    st.subheader("🔥 Trending Scores")
    chart_df = pd.DataFrame(
        [{"Deal": d.get('title', ''), "Score": trending_score(d)} for d in ranked[:10]]
    )
    fig = px.bar(chart_df, x="Score", y="Deal", orientation="h", color="Score", color_continuous_scale="Reds")
    fig.update_layout(yaxis={"categoryorder": "total ascending"}, height=420, margin=dict(l=10, r=10, t=10, b=10))
    st.plotly_chart(fig, use_container_width=True)

    st.markdown("---")
    st.subheader("📋 All Matching Deals")
    if 'deals_table' not in st.session_state:
        st.session_state.deals_table = DataTable(ranked, DEAL_COLUMNS, page_size=settings.TABLE_PAGE_SIZE)
    else:
        st.session_state.deals_table.set_rows(ranked)
    render_data_table(st.session_state.deals_table, "deals_list")


# ===== ADMIN CONSOLE =====

def logout(message: str = ""):
    timer = st.session_state.session_timer
    if timer is not None:
        timer.unmount()
    st.session_state.authenticated = False
    st.session_state.admin_error = message
    st.session_state.admin_client = None
    st.session_state.loaders = None
    st.session_state.session_timer = None
    st.session_state.tables = {}


def run_admin_action(action):
    """Run a table action, turning API failures into an on-page error."""
    try:
        action()
    except SessionExpiredError:
        logout(SESSION_EXPIRED_MESSAGE)
    except ApiError as exc:
        st.session_state.admin_error = f"Action failed: {exc}"


def reload_tab(tab: str):
    state = st.session_state.loaders.activate(tab)
    if isinstance(state, Loaded) and tab in st.session_state.tables:
        st.session_state.tables[tab].set_rows(state.data or [])


def login(admin_secret: str):
    if not admin_secret:
        st.session_state.admin_error = "Please enter admin secret"
        return

    client = AdminClient(admin_secret)
    timer = SessionTimer(
        on_expire=lambda: logout(SESSION_EXPIRED_MESSAGE),
        config=SessionConfig(),
        activity=st.session_state.activity,
    )
    st.session_state.admin_client = client
    st.session_state.loaders = build_admin_loaders(
        client,
        user_search=lambda: st.session_state.user_search,
        on_session_expired=lambda: logout(SESSION_EXPIRED_MESSAGE),
    )
    st.session_state.session_timer = timer.mount()
    st.session_state.tables = {}
    st.session_state.admin_error = ""
    st.session_state.authenticated = True
    logger.info("Admin logged in")


@st.fragment(run_every=settings.SESSION_POLL_INTERVAL_MS / 1000)
def session_banner():
    """Polls the session timer; the countdown and extend button live here."""
    timer = st.session_state.session_timer
    if timer is None:
        return
    snapshot = timer.tick()
    if timer.is_expired:
        st.rerun()

    text_col, button_col = st.columns([4, 1])
    with text_col:
        if snapshot.show_warning:
            st.warning(f"⏳ Session expires in **{format_time(snapshot.time_remaining)}**")
        else:
            st.caption(f"🔐 Session time left: {format_time(snapshot.time_remaining)}")
    with button_col:
        if st.button("Extend session", key="extend_session", use_container_width=True):
            if not timer.reset_session() and timer.is_expired:
                st.rerun()


def render_dashboard(stats):
    stats = stats or {}
    counts = {label: stats.get(field) for label, field in (
        ("Users", "totalUsers"), ("Posts", "totalPosts"), ("Deals", "totalDeals"),
        ("Businesses", "totalBusinesses"), ("Events", "totalEvents"), ("Trips", "totalTrips"),
    ) if stats.get(field) is not None}

    if not counts:
        st.json(stats)
        return

    metric_cols = st.columns(len(counts))
    for metric_col, (label, value) in zip(metric_cols, counts.items()):
        with metric_col:
            st.metric(label, f"{value:,}")

    chart_df = pd.DataFrame({"Resource": list(counts), "Count": list(counts.values())})
    fig = px.bar(chart_df, x="Resource", y="Count", color="Resource")
    fig.update_layout(showlegend=False, height=360, margin=dict(l=10, r=10, t=10, b=10))
    st.plotly_chart(fig, use_container_width=True)


def admin_console():
    if not st.session_state.authenticated:
        st.title("🔐 Admin Panel")
        st.caption("TravelBuddy Management System")
        with st.form("admin_login"):
            secret = st.text_input("Admin Secret", type="password")
            submitted = st.form_submit_button("Login to Dashboard", use_container_width=True)
        if submitted:
            login(secret)
            st.rerun()
        if st.session_state.admin_error:
            st.error(st.session_state.admin_error)
        return

    # NOTE: a full script rerun only happens on user interaction (the timer polls from a fragment),
    # so it counts as activity and pushes the session deadline back.
    st.session_state.activity.emit("pointerdown")
    if not st.session_state.authenticated:
        st.rerun()

    header_col, logout_col = st.columns([5, 1])
    with header_col:
        st.title("🛠️ TravelBuddy Admin")
    with logout_col:
        if st.button("Logout", use_container_width=True):
            logout()
            st.rerun()
    session_banner()

    tab = st.sidebar.radio("Admin section", ADMIN_TABS, format_func=lambda t: t.title(), key="admin_tab")
    if tab == "users":
        st.text_input("Search users", key="user_search", on_change=lambda: reload_tab("users"))

    loaders = st.session_state.loaders
    if st.button("🔄 Refresh", key=f"refresh_{tab}"):
        reload_tab(tab)
    state = loaders.ensure_loaded(tab)

    if not st.session_state.authenticated:
        st.rerun()
    if st.session_state.admin_error:
        st.error(st.session_state.admin_error)
        st.session_state.admin_error = ""

    if isinstance(state, Loading):
        st.info("Loading...")
        return
    if isinstance(state, Failed):
        st.error(state.error)
        return
    if not isinstance(state, Loaded):
        return

    if tab == "dashboard":
        render_dashboard(state.data)
    elif tab == "analytics":
        st.json(state.data or {})
    else:
        tables = st.session_state.tables
        if tab not in tables:
            actions = AdminActions(st.session_state.admin_client, reload_tab) if tab in ROW_ACTIONS else None
            tables[tab] = build_table(tab, state.data or [], actions)
        render_data_table(tables[tab], f"admin_{tab}", ROW_ACTIONS.get(tab, ()))


# ===== NAVIGATION =====

st.sidebar.title("🧭 TravelBuddy")
page = st.sidebar.radio("Go to", ["Deals", "Admin"], key="page")

language = st.sidebar.selectbox(
    "🌐 Language",
    options=list(LANGUAGES),
    index=list(LANGUAGES).index(get_language(st.session_state.store)) if get_language(st.session_state.store) in LANGUAGES else 0,
    format_func=lambda code: LANGUAGES[code],
)
if language != get_language(st.session_state.store):
    set_language(st.session_state.store, language)

if page == "Deals":
    deals_page()
else:
    admin_console()

st.markdown("---")
st.caption(f"API: {settings.API_URL} | Rendered {datetime.now().strftime('%H:%M:%S')}")
