"""PortalChat backend: real-time direct messaging for the portal."""
