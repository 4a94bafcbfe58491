"""API routes package — import all routers here for inclusion in the app."""

from notice_vault.api.routes.access import router as access_router  # noqa: F401
from notice_vault.api.routes.documents import router as documents_router  # noqa: F401
