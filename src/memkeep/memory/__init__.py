"""Memory storage: markdown files with YAML frontmatter plus an index cache.

Layout (one per scope root):
    <root>/
    ├── index.json                 # Metadata cache, rebuilt from files when missing/corrupt
    ├── graph.json                 # Relationship graph (see memkeep.graph)
    ├── embeddings.json            # Embedding cache keyed by content hash
    ├── permanent/
    │   └── decision-oauth2.md     # One memory per file
    └── temporary/
        └── breadcrumb-*.md        # Ephemeral types

Files are the source of truth. The index and graph are derived state that
repair can always regenerate.
"""
