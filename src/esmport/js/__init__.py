"""JavaScript analysis and rewriting built on tree-sitter."""
