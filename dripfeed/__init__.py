"""Drip-feed release scheduler for the news-curation backend."""
