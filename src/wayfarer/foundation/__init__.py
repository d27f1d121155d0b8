"""Process-level plumbing shared by applications embedding Wayfarer."""
