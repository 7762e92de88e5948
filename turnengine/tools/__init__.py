"""Tool definitions, request parsing and single-hop resolution."""
