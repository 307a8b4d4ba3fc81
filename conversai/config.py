import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./conversai.db")
    fernet_key: str = os.getenv("FERNET_KEY", "")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # JWT for our own API sessions
    secret_key: str = os.getenv("SECRET_KEY", "change_me_now")
    jwt_algorithm: str = os.getenv("JWT_ALGORITHM", "HS256")
    access_token_expire_minutes: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))

    # frontend base (OAuth callbacks redirect here) and public API base (redirect URIs)
    app_url: str = os.getenv("APP_URL", "http://localhost:3000")
    api_base_url: str = os.getenv("API_BASE_URL", "http://localhost:8000")
    app_owner_email: str = os.getenv("APP_OWNER_EMAIL", "")

    twitter_client_id: str = os.getenv("TWITTER_CLIENT_ID", "")
    twitter_client_secret: str = os.getenv("TWITTER_CLIENT_SECRET", "")
    twitter_redirect_uri: str = os.getenv("TWITTER_REDIRECT_URI", f"{api_base_url}/api/social/twitter/callback")

    linkedin_client_id: str = os.getenv("LINKEDIN_CLIENT_ID", "")
    linkedin_client_secret: str = os.getenv("LINKEDIN_CLIENT_SECRET", "")
    linkedin_redirect_uri: str = os.getenv("LINKEDIN_REDIRECT_URI", f"{api_base_url}/api/social/linkedin/callback")
    # OpenID scopes: the id_token sub is stored as the account id and used as the author
    linkedin_scopes: str = os.getenv("LINKEDIN_SCOPES", "openid profile email w_member_social")

    instagram_client_id: str = os.getenv("INSTAGRAM_CLIENT_ID", "")
    instagram_client_secret: str = os.getenv("INSTAGRAM_CLIENT_SECRET", "")
    instagram_redirect_uri: str = os.getenv("INSTAGRAM_REDIRECT_URI", f"{api_base_url}/api/social/instagram/callback")

    google_client_id: str = os.getenv("GOOGLE_CLIENT_ID", "")
    google_client_secret: str = os.getenv("GOOGLE_CLIENT_SECRET", "")
    youtube_redirect_uri: str = os.getenv("YOUTUBE_REDIRECT_URI", f"{api_base_url}/api/social/youtube/callback")

    facebook_app_id: str = os.getenv("FACEBOOK_APP_ID", "")
    facebook_app_secret: str = os.getenv("FACEBOOK_APP_SECRET", "")
    facebook_redirect_uri: str = os.getenv("FACEBOOK_REDIRECT_URI", f"{api_base_url}/api/social/facebook/callback")
    facebook_graph_version: str = os.getenv("FACEBOOK_GRAPH_VERSION", "v20.0")

    openrouter_api_key: str = os.getenv("OPENROUTER_API_KEY", "")
    openrouter_base_url: str = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")

    scheduler_autostart: bool = _flag("SCHEDULER_AUTOSTART")


settings = Settings()
