"""Command line tools for zarf-agent."""
