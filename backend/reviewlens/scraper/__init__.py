"""Play Store review scraping."""
from reviewlens.scraper.play_store_scraper import PlayStoreScraper, ScraperConfig, ScrapingResult

__all__ = ["PlayStoreScraper", "ScraperConfig", "ScrapingResult"]
