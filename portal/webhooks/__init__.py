from portal.webhooks.stripe_webhook import build_web_app

__all__ = ["build_web_app"]
