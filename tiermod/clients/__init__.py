"""HTTP clients for the external link-reputation and AI moderation services."""
