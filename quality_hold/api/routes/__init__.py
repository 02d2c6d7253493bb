"""
API route modules.

This package contains subrouters for:
- Quality incidents: incident lifecycle, sample grid, media and review actions
- Shipments: delivery confirmation
- Suppliers: delivery scorecard

Routers are included from quality_hold.api.main (under the /api/v1 prefix).
"""
