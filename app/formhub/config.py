import os
from dataclasses import dataclass


TEMPLATE_DELETE_POLICIES = ("owner_or_admin", "owner_admin_or_grantee")


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    jwt_secret: str
    jwt_expires_minutes: int
    template_delete_policy: str
    cors_origin: str
    trust_proxy_headers: bool

    storage_backend: str
    storage_local_root: str
    s3_endpoint: str
    s3_region: str
    s3_bucket: str
    s3_access_key_id: str
    s3_secret_access_key: str

    jira_base_url: str
    jira_email: str
    jira_api_token: str
    jira_project_key: str

    odoo_url: str
    odoo_db: str
    odoo_username: str
    odoo_password: str

    salesforce_login_url: str
    salesforce_client_id: str
    salesforce_client_secret: str
    salesforce_username: str
    salesforce_password: str
    salesforce_token: str


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def load_settings() -> Settings:
    secret_key = _getenv("SECRET_KEY", "change-me")
    policy = _getenv("TEMPLATE_DELETE_POLICY", "owner_or_admin").lower()
    if policy not in TEMPLATE_DELETE_POLICIES:
        raise RuntimeError(
            f"TEMPLATE_DELETE_POLICY must be one of: {', '.join(TEMPLATE_DELETE_POLICIES)} (got {policy!r})"
        )
    return Settings(
        secret_key=secret_key,
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///formhub.db"),
        jwt_secret=_getenv("JWT_SECRET", secret_key),
        jwt_expires_minutes=_getenv_int("JWT_EXPIRES_MINUTES", 60),
        template_delete_policy=policy,
        cors_origin=_getenv("CORS_ORIGIN", ""),
        trust_proxy_headers=_getenv("TRUST_PROXY_HEADERS", "0").lower() in ("1", "true", "yes"),
        storage_backend=_getenv("STORAGE_BACKEND", "local"),
        storage_local_root=_getenv("STORAGE_LOCAL_ROOT", "storage"),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", "nyc3"),
        s3_bucket=_getenv("S3_BUCKET", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        jira_base_url=_getenv("JIRA_BASE_URL", ""),
        jira_email=_getenv("JIRA_EMAIL", ""),
        jira_api_token=_getenv("JIRA_API_TOKEN", ""),
        jira_project_key=_getenv("JIRA_PROJECT_KEY", ""),
        odoo_url=_getenv("ODOO_URL", ""),
        odoo_db=_getenv("ODOO_DB", ""),
        odoo_username=_getenv("ODOO_USERNAME", ""),
        odoo_password=_getenv("ODOO_PASSWORD", ""),
        salesforce_login_url=_getenv("SALESFORCE_LOGIN_URL", "https://login.salesforce.com"),
        salesforce_client_id=_getenv("SALESFORCE_CLIENT_ID", ""),
        salesforce_client_secret=_getenv("SALESFORCE_CLIENT_SECRET", ""),
        salesforce_username=_getenv("SALESFORCE_USERNAME", ""),
        salesforce_password=_getenv("SALESFORCE_PASSWORD", ""),
        salesforce_token=_getenv("SALESFORCE_TOKEN", ""),
    )


def load_config() -> dict:
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "JWT_SECRET": s.jwt_secret,
        "JWT_EXPIRES_MINUTES": s.jwt_expires_minutes,
        "TEMPLATE_DELETE_POLICY": s.template_delete_policy,
        "CORS_ORIGIN": s.cors_origin,
        "TRUST_PROXY_HEADERS": s.trust_proxy_headers,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_LOCAL_ROOT": s.storage_local_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_BUCKET": s.s3_bucket,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "JIRA_BASE_URL": s.jira_base_url,
        "JIRA_EMAIL": s.jira_email,
        "JIRA_API_TOKEN": s.jira_api_token,
        "JIRA_PROJECT_KEY": s.jira_project_key,
        "ODOO_URL": s.odoo_url,
        "ODOO_DB": s.odoo_db,
        "ODOO_USERNAME": s.odoo_username,
        "ODOO_PASSWORD": s.odoo_password,
        "SALESFORCE_LOGIN_URL": s.salesforce_login_url,
        "SALESFORCE_CLIENT_ID": s.salesforce_client_id,
        "SALESFORCE_CLIENT_SECRET": s.salesforce_client_secret,
        "SALESFORCE_USERNAME": s.salesforce_username,
        "SALESFORCE_PASSWORD": s.salesforce_password,
        "SALESFORCE_TOKEN": s.salesforce_token,
        # image uploads (10MB)
        "MAX_CONTENT_LENGTH": 10 * 1024 * 1024,
        "JSON_SORT_KEYS": False,
    }
