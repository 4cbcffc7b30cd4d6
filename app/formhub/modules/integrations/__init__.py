"""
Outbound SaaS connectors (Jira, Salesforce, Odoo).

Connectors hold no process-wide session state: each call site authenticates
and passes the resulting session object along explicitly.
"""
