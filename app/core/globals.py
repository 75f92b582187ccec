"""Global variables."""

OPENAPI_TAGS = [
    {
        "name": "Authentication",
        "description": "User registration, login and profile",
    },
    {
        "name": "Listings",
        "description": "Post, browse, cancel and delete surplus food",
    },
    {
        "name": "Claims",
        "description": (
            "Claim workflow from request to pickup code verification"
            " and hand-over"
        ),
    },
    {
        "name": "Cron",
        "description": "Out-of-band expiry sweeps for external schedulers",
    },
    {
        "name": "Analytics",
        "description": "Food rescued and its environmental impact",
    },
    {
        "name": "Health",
        "description": "Application health check endpoints",
    },
]
