"""API client for backend communication."""

import requests
from typing import Optional, Dict, Any
import os


class APIClient:
    """Client for communicating with the ReviewLens FastAPI backend."""

    def __init__(self, base_url: Optional[str] = None, timeout: float = 30):
        """
        Initialize API client.

        Args:
            base_url: Base URL of the API (default: from environment or localhost)
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url or os.getenv("API_BASE_URL", "http://localhost:8000")
        self.timeout = timeout

    def _get_headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    @staticmethod
    def _error(response: requests.Response, default: str) -> str:
        try:
            return response.json().get("detail", default)
        except ValueError:
            return default

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None, default_error: str = "Request failed") -> tuple[bool, Any]:
        try:
            response = requests.get(
                f"{self.base_url}{path}",
                params=params,
                headers=self._get_headers(),
                timeout=self.timeout
            )

            if response.status_code == 200:
                return True, response.json()
            else:
                return False, self._error(response, default_error)

        except requests.exceptions.ConnectionError:
            return False, "Cannot connect to server. Make sure the backend is running."
        except requests.exceptions.RequestException as e:
            return False, f"Error: {str(e)}"

    def health_check(self) -> bool:
        """
        Check if the API is healthy.

        Returns:
            True if API is accessible, False otherwise
        """
        try:
            response = requests.get(f"{self.base_url}/health", timeout=5)
            return response.status_code == 200
        except requests.exceptions.RequestException:
            return False

    # ============================================
    # Analysis Runs
    # ============================================

    def start_analysis(self, app_id: str, max_reviews: Optional[int] = None) -> tuple[bool, Any]:
        """
        Start scraping and analyzing an app's reviews.

        Args:
            app_id: Play Store package name
            max_reviews: Optional cap on scraped reviews

        Returns:
            Tuple of (success, run data or error_message)
        """
        body = {"max_reviews": max_reviews} if max_reviews else {}
        try:
            response = requests.post(
                f"{self.base_url}/api/analysis/{app_id}/runs",
                json=body,
                headers=self._get_headers(),
                timeout=self.timeout
            )

            if response.status_code in (200, 202):
                return True, response.json()
            else:
                return False, self._error(response, "Failed to start analysis")

        except requests.exceptions.ConnectionError:
            return False, "Cannot connect to server. Make sure the backend is running."
        except requests.exceptions.RequestException as e:
            return False, f"Error: {str(e)}"

    def cancel_analysis(self, app_id: str) -> tuple[bool, Any]:
        """Cancel the app's running analysis."""
        try:
            response = requests.post(
                f"{self.base_url}/api/analysis/{app_id}/cancel",
                headers=self._get_headers(),
                timeout=self.timeout
            )

            if response.status_code == 200:
                return True, response.json()
            else:
                return False, self._error(response, "Failed to cancel analysis")
        except requests.exceptions.RequestException as e:
            return False, str(e)

    def get_progress(self, app_id: str) -> tuple[bool, Any]:
        """Per-analyzer progress of the app's run."""
        return self._get(f"/api/analysis/{app_id}/progress", default_error="Failed to get progress")

    # ============================================
    # Dashboard Data
    # ============================================

    def get_overview(self, app_id: str) -> tuple[bool, Any]:
        return self._get(f"/api/analysis/{app_id}/overview", default_error="No overview available")

    def get_reviews(
        self,
        app_id: str,
        search: Optional[str] = None,
        rating: Optional[int] = None,
        sentiment: str = "all",
        date_range: str = "all",
        sort_by: str = "date",
        sort_order: str = "desc",
        page: int = 1,
        page_size: int = 20
    ) -> tuple[bool, Any]:
        """Filtered, sorted and paginated reviews."""
        params = {
            "sentiment": sentiment,
            "date_range": date_range,
            "sort_by": sort_by,
            "sort_order": sort_order,
            "page": page,
            "page_size": page_size
        }
        if search:
            params["search"] = search
        if rating:
            params["rating"] = rating

        return self._get(f"/api/analysis/{app_id}/reviews", params=params, default_error="No reviews available")

    def get_topics(self, app_id: str) -> tuple[bool, Any]:
        return self._get(f"/api/analysis/{app_id}/topics", default_error="No topics available")

    # ============================================
    # Cache
    # ============================================

    def get_cache_status(self) -> tuple[bool, Any]:
        """Entry count and storage usage of the analysis cache."""
        return self._get("/api/cache/status", default_error="Failed to get cache status")

    def clear_cache(self) -> tuple[bool, Any]:
        """Delete every cached analysis."""
        try:
            response = requests.delete(
                f"{self.base_url}/api/cache",
                headers=self._get_headers(),
                timeout=self.timeout
            )

            if response.status_code == 200:
                return True, response.json()
            else:
                return False, self._error(response, "Failed to clear cache")
        except requests.exceptions.RequestException as e:
            return False, str(e)
