"""Tabspaces - persistent workspaces over a browser's ephemeral tab model."""
