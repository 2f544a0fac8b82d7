"""ReviewLens - Streamlit Frontend."""

import streamlit as st
from components.api_client import APIClient

# Page configuration
st.set_page_config(
    page_title="ReviewLens",
    page_icon="🔎",
    layout="wide",
    initial_sidebar_state="expanded"
)

# Initialize API client
if "api_client" not in st.session_state:
    st.session_state.api_client = APIClient()


def format_bytes(size: int) -> str:
    """Human readable byte count."""
    for unit in ["B", "KB", "MB"]:
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} GB"


def show_cache_sidebar():
    """Cache usage and the clear button."""
    api_client = st.session_state.api_client

    with st.sidebar:
        st.title("🔎 ReviewLens")
        st.markdown("---")
        st.subheader("🗄️ Analysis Cache")

        success, status = api_client.get_cache_status()
        if success:
            if not status["is_ready"]:
                st.warning("Cache unavailable, analyses run uncached")
            else:
                st.metric("Cached analyses", status["item_count"])
                usage = min(status["usage_percentage"], 100.0)
                st.progress(usage / 100, text=f"{format_bytes(status['total_size'])} of {format_bytes(status['max_size'])}")
        else:
            st.caption(f"Cache status unavailable: {status}")

        if st.button("🗑️ Clear cache", use_container_width=True):
            ok, result = api_client.clear_cache()
            if ok:
                st.success(result["message"])
                st.rerun()
            else:
                st.error(f"Failed to clear cache: {result}")


def show_search():
    """App search form leading to the analysis page."""
    st.title("🔎 ReviewLens")
    st.subheader("Analyze Google Play reviews")

    col1, col2, col3 = st.columns([1, 2, 1])

    with col2:
        st.markdown("---")

        with st.form("app_search_form"):
            app_id = st.text_input(
                "App package name",
                value=st.session_state.get("app_id", ""),
                placeholder="com.example.app"
            )
            max_reviews = st.slider("Reviews to fetch", min_value=100, max_value=2000, value=500, step=100)
            submit_button = st.form_submit_button("Analyze", use_container_width=True)

            if submit_button:
                if not app_id.strip():
                    st.error("Please enter an app package name")
                else:
                    st.session_state.app_id = app_id.strip()
                    st.session_state.max_reviews = max_reviews
                    st.session_state.start_requested = True
                    st.switch_page("pages/01_analysis.py")

    st.markdown("""
    ### How it works
    1. Enter the package name from the app's Play Store URL (`?id=com.example.app`)
    2. The newest reviews are fetched and analyzed for patterns, sentiment and topics
    3. Results are cached, so analyzing the same app again is instant
    """)


def main():
    """Main application entry point."""
    if not st.session_state.api_client.health_check():
        st.error("⚠️ Cannot connect to backend API. Please make sure the server is running at http://localhost:8000")
        st.info("To start the backend: `cd backend && python -m uvicorn reviewlens.main:app --reload`")
        return

    show_cache_sidebar()
    show_search()


if __name__ == "__main__":
    main()
