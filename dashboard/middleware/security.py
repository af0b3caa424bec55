"""Security headers for dashboard pages."""

import secrets

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


class DashboardSecurityMiddleware(BaseHTTPMiddleware):
    """Sets a per-request CSP nonce and browser hardening headers on /dashboard responses"""

    def __init__(self, app, path_prefix: str = "/dashboard"):
        super().__init__(app)
        self.path_prefix = path_prefix

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        nonce = self.generate_nonce()
        request.state.csp_nonce = nonce
        response = await call_next(request)

        security_headers = {
            "Content-Security-Policy": (
                "default-src 'self'; "
                f"script-src 'self' 'nonce-{nonce}' https://cdn.tailwindcss.com; "
                "style-src 'self' 'unsafe-inline' https://cdn.jsdelivr.net; "
                "connect-src 'self'; "
                "img-src 'self' data:; "
                "font-src 'self' https://fonts.gstatic.com"
            ),
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "Referrer-Policy": "strict-origin-when-cross-origin",
            "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
        }
        for header, value in security_headers.items():
            response.headers[header] = value
        return response

    @staticmethod
    def generate_nonce() -> str:
        return secrets.token_urlsafe(16)
