"""Bundled Jinja2 templates for kresolve reporters."""
