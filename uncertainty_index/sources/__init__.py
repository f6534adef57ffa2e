"""
Survey sources feeding the uncertainty index.

Covers the fourteen-source panel:
- FRED series (Michigan sentiment, OECD confidence, policy uncertainty)
- Press-release pages scraped by regex (Conference Board, NFIB, BRT, EY, Deloitte)
- Published workbooks (Richmond Fed CFO survey, Atlanta Fed SBU, NY Fed SCE)
"""

__all__ = ["base", "fred", "scraping", "workbooks", "registry"]
