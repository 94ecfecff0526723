"""
Membership Ledger Routes Registry

Defines service metadata and routes exposed on the info endpoint.
"""

BASE_PATH = "/api/v1/membership-ledger"

SERVICE_METADATA = {
    "service_name": "membership_ledger_service",
    "version": "1.0.0",
    "tags": ["v1", "membership", "class-credits", "microservice"],
    "capabilities": [
        "membership_assignment",
        "usage_adjustments",
        "manual_override",
        "membership_summaries",
        "adjustment_audit",
        "membership_alerts",
        "membership_maintenance",
    ],
}

# Route definitions for API documentation
ROUTES = [
    # Health endpoints
    {"path": "/health", "methods": ["GET"], "description": "Health check"},

    # Service info
    {"path": f"{BASE_PATH}/info", "methods": ["GET"], "description": "Service information"},

    # Catalog
    {"path": f"{BASE_PATH}/types", "methods": ["GET"], "description": "List active membership types"},

    # Memberships
    {"path": f"{BASE_PATH}/memberships", "methods": ["POST"], "description": "Assign membership"},
    {"path": f"{BASE_PATH}/memberships/{{membership_id}}", "methods": ["GET"], "description": "Get membership"},
    {"path": f"{BASE_PATH}/players/{{player_id}}/summary", "methods": ["GET"], "description": "Get membership summary"},
    {"path": f"{BASE_PATH}/players/{{player_id}}/adjustments", "methods": ["GET"], "description": "Player adjustment history"},

    # Usage
    {"path": f"{BASE_PATH}/memberships/{{membership_id}}/adjustments", "methods": ["POST"], "description": "Adjust usage"},
    {"path": f"{BASE_PATH}/memberships/{{membership_id}}/adjustments", "methods": ["GET"], "description": "Adjustment history"},
    {"path": f"{BASE_PATH}/memberships/{{membership_id}}/audit", "methods": ["GET"], "description": "Lifecycle audit trail"},

    # Administration
    {"path": f"{BASE_PATH}/memberships/{{membership_id}}/override", "methods": ["PUT"], "description": "Toggle manual override"},
    {"path": f"{BASE_PATH}/memberships/{{membership_id}}/status", "methods": ["PUT"], "description": "Set status"},

    # Alerts & maintenance
    {"path": f"{BASE_PATH}/reminders", "methods": ["POST"], "description": "Send reminder"},
    {"path": f"{BASE_PATH}/maintenance/run", "methods": ["POST"], "description": "Run maintenance sweep"},
]


def get_route_summary():
    """Get route metadata for the info endpoint"""
    route_paths = [r["path"] for r in ROUTES]
    return {
        "route_count": str(len(ROUTES)),
        "routes": route_paths,
        "api_version": "v1",
        "base_path": BASE_PATH,
    }


__all__ = ["SERVICE_METADATA", "ROUTES", "BASE_PATH", "get_route_summary"]
