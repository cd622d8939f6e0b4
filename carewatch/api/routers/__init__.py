"""API routers: events, alerts, SOS, contacts."""
