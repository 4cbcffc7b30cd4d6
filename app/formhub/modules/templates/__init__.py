"""
Templates module.

Scope:
- Template CRUD with ordered questions (edits replace the whole question set)
- Access resolution (owner/admin bypass, public until any rule exists)
- Likes and comments with cached counters
- Optional cover image through the storage backend
"""
