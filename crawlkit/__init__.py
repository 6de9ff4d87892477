"""Callback-driven web scraping and crawling framework: collector, requests, elements and a scaffold command."""

__version__ = "0.1.0"