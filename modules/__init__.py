"""Print geometry, PDF rendering and PDF preflight for the storybook print service."""

__all__ = [
    "print_specs",
    "pdf_renderer",
    "pdf_analyzer",
]
