"""
Form responses module: submissions, owner-only listing, per-question summaries.
"""
