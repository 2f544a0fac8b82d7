"""Review Analysis Page."""

import time

import pandas as pd
import streamlit as st

from components.api_client import APIClient

st.set_page_config(page_title="Review Analysis", page_icon="📊", layout="wide")

POLL_INTERVAL_SECONDS = 0.5
RUNNING_STATUSES = ("scraping", "running")

ANALYZER_LABELS = {
    "patterns": "🧩 Patterns",
    "sentiment": "😊 Sentiment",
    "topics": "🏷️ Topics",
}

DATE_RANGES = {
    "All time": "all",
    "Last week": "last_week",
    "Last month": "last_month",
    "Last 3 months": "last_3_months",
    "Last 6 months": "last_6_months",
    "Last year": "last_year",
}

if "api_client" not in st.session_state:
    st.session_state.api_client = APIClient()

api_client = st.session_state.api_client

st.title("📊 Review Analysis")

app_id = st.text_input("App package name", value=st.session_state.get("app_id", ""), placeholder="com.example.app")
if not app_id:
    st.info("Enter an app package name to analyze its reviews")
    st.stop()
st.session_state.app_id = app_id

col_start, col_cancel, _ = st.columns([1, 1, 4])

with col_start:
    if st.button("▶️ Analyze", use_container_width=True):
        st.session_state.start_requested = True

# Start requests also come from the home page search form
if st.session_state.pop("start_requested", False):
    success, result = api_client.start_analysis(app_id, st.session_state.get("max_reviews"))
    if not success:
        st.error(f"Failed to start analysis: {result}")

with col_cancel:
    if st.button("⏹️ Cancel", use_container_width=True):
        success, result = api_client.cancel_analysis(app_id)
        if success:
            st.warning("Analysis cancelled")
        else:
            st.error(f"Failed to cancel: {result}")


def show_progress(progress_data: dict):
    """One progress bar per analyzer plus the overall figure."""
    st.subheader("⏳ Progress")

    if progress_data["status"] == "scraping":
        st.info("Fetching reviews from the Play Store...")

    cols = st.columns(len(ANALYZER_LABELS))
    for idx, (kind, label) in enumerate(ANALYZER_LABELS.items()):
        with cols[idx]:
            analyzer = progress_data["progress"].get(kind, {})
            st.markdown(f"**{label}**")
            st.progress(analyzer.get("progress", 0) / 100, text=analyzer.get("details") or analyzer.get("stage", "idle"))
            if analyzer.get("stage") == "error":
                st.error(analyzer.get("error") or "Failed")

    st.caption(f"Overall: {progress_data['overall_progress']:.0f}%")


def show_overview():
    success, data = api_client.get_overview(app_id)
    if not success:
        st.warning(data)
        return

    app = data["app"]
    stats = data["reviews_stats"]

    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("App", app["name"])
    with col2:
        st.metric("Store rating", f"{app['rating']:.1f} ⭐")
    with col3:
        st.metric("Reviews analyzed", stats["total"])
    with col4:
        st.metric("Version", app["version"])

    st.markdown("---")

    col_left, col_right = st.columns(2)

    with col_left:
        st.markdown("### ⭐ Rating Distribution")
        df_ratings = pd.DataFrame({
            "Stars": [f"{i} ⭐" for i in range(1, 6)],
            "Reviews": stats["distribution"]
        }).set_index("Stars")
        st.bar_chart(df_ratings)

    with col_right:
        st.markdown("### 😊 Sentiment")
        sentiment = stats["sentiment"]
        df_sentiment = pd.DataFrame({
            "Sentiment": ["Positive", "Neutral", "Negative"],
            "Share (%)": [sentiment["positive"], sentiment["neutral"], sentiment["negative"]]
        }).set_index("Sentiment")
        st.bar_chart(df_sentiment)
        st.caption(f"Average confidence: {sentiment['average_confidence']:.2f}")

    if stats["over_time"]:
        st.markdown("### 📈 Rating Over Time")
        df_time = pd.DataFrame(stats["over_time"]).rename(columns={"date": "Month", "avg": "Avg rating", "count": "Reviews"})
        st.line_chart(df_time.set_index("Month")[["Avg rating"]])

    if stats["common_topics"]:
        st.markdown("### 🏷️ Common Topics")
        df_topics = pd.DataFrame(stats["common_topics"]).rename(
            columns={"name": "Topic", "count": "Mentions", "sentiment": "Sentiment"}
        )
        st.dataframe(df_topics, use_container_width=True, hide_index=True)


def show_reviews():
    col1, col2, col3, col4 = st.columns(4)

    with col1:
        search = st.text_input("Search", key="review_search")
    with col2:
        rating = st.selectbox("Rating", options=[0, 5, 4, 3, 2, 1], format_func=lambda r: "Any" if r == 0 else f"{r} ⭐")
    with col3:
        sentiment = st.selectbox("Sentiment", options=["all", "positive", "neutral", "negative"], format_func=str.title)
    with col4:
        date_label = st.selectbox("Period", options=list(DATE_RANGES.keys()))

    col5, col6, col7 = st.columns(3)
    with col5:
        sort_by = st.selectbox("Sort by", options=["date", "rating", "likes"], format_func=str.title)
    with col6:
        sort_order = st.radio("Order", options=["desc", "asc"], horizontal=True, format_func=lambda o: "Descending" if o == "desc" else "Ascending")
    with col7:
        page = st.number_input("Page", min_value=1, value=1, step=1)

    success, data = api_client.get_reviews(
        app_id,
        search=search,
        rating=rating,
        sentiment=sentiment,
        date_range=DATE_RANGES[date_label],
        sort_by=sort_by,
        sort_order=sort_order,
        page=int(page)
    )
    if not success:
        st.warning(data)
        return

    st.info(f"📄 {data['total']} reviews, page {data['page']} of {data['total_pages']}")

    if not data["reviews"]:
        st.caption("No reviews match the filters")
        return

    rows = [{
        "Date": (review["date"] or "")[:10],
        "Author": review["author"],
        "Rating": review["rating"],
        "Sentiment": review["sentiment"]["label"],
        "Review": review["text"],
        "Topics": ", ".join(review["topics"]),
        "Likes": review["likes"],
        "Version": review["version"]
    } for review in data["reviews"]]

    st.dataframe(pd.DataFrame(rows), use_container_width=True, hide_index=True)


def show_topics():
    success, data = api_client.get_topics(app_id)
    if not success:
        st.warning(data)
        return

    topics = data["reviews_stats"]["common_topics"]
    if not topics:
        st.caption("No topics found")
        return

    df_topics = pd.DataFrame(topics).rename(columns={"name": "Topic", "count": "Mentions", "sentiment": "Sentiment"})

    st.markdown("### 🏷️ Topic Mentions")
    st.bar_chart(df_topics.set_index("Topic")[["Mentions"]])

    st.markdown("### 😊 Topic Sentiment")
    st.bar_chart(df_topics.set_index("Topic")[["Sentiment"]])

    st.markdown("### 💬 Reviews Mentioning Topics")
    rows = [{
        "Rating": review["rating"],
        "Topics": ", ".join(review["topics"]),
        "Review": review["text"]
    } for review in data["reviews"] if review["topics"]]

    if rows:
        st.dataframe(pd.DataFrame(rows), use_container_width=True, hide_index=True)
    else:
        st.caption("No reviews mention the top topics")


success, progress_data = api_client.get_progress(app_id)

if not success:
    st.error(f"Failed to load progress: {progress_data}")
    st.stop()

status = progress_data["status"]

if status in RUNNING_STATUSES:
    show_progress(progress_data)
    time.sleep(POLL_INTERVAL_SECONDS)
    st.rerun()

if status == "error":
    st.error(f"❌ {progress_data.get('error') or 'Analysis failed'}")
elif status == "cancelled":
    st.warning("Analysis was cancelled")
elif status == "interrupted":
    st.warning("The previous analysis was interrupted. Click Analyze to run it again.")
    show_progress(progress_data)
elif status == "idle":
    st.info("No analysis yet for this app. Click Analyze to start.")

if status == "completed":
    tab1, tab2, tab3 = st.tabs(["📋 Overview", "💬 Reviews", "🏷️ Topic Analysis"])

    with tab1:
        show_overview()

    with tab2:
        show_reviews()

    with tab3:
        show_topics()
