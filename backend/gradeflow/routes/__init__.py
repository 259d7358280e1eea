"""API routers, one module per resource."""

from . import (
    auth_routes,
    backup_routes,
    category_routes,
    grade_routes,
    metadata_routes,
    report_routes,
    student_routes,
    subject_routes,
    user_routes,
)

ROUTERS = [
    auth_routes.router,
    user_routes.router,
    student_routes.router,
    subject_routes.router,
    category_routes.router,
    grade_routes.router,
    report_routes.router,
    backup_routes.router,
    metadata_routes.router,
]

__all__ = ["ROUTERS"]
