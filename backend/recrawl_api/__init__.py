"""
FastAPI backend for the catalog recrawler.

Provides REST API endpoints for:
- Browsing stored catalogs and their last reconciliation outcome
- Viewing recrawl run history and alerts
- Triggering recrawls
"""
