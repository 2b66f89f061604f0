"""
Canonical row types shared by the extractors and the CSV store.
"""

from typing import List, TypedDict


class LeadRow(TypedDict, total=False):
    """One lead scraped from the primary sidebar. Missing keys are written as ""."""
    name: str                 # Cleaned full name
    first_name: str
    last_name: str
    title: str
    company: str              # Cleaned company name
    location: str
    profile_url: str          # LinkedIn profile URL, the natural unique key
    domain: str               # Consolidated website domain (filled by enrichment)
    email: str


class EnrichmentProfile(TypedDict):
    """One contact card read from the enrichment sidebar."""
    full_name: str
    first_name: str
    last_name: str
    domains: List[str]        # Business domains only, at most three
