"""
FPO Lifecycle Service
Blueprint registry helpers.
"""

from flask import request


def page_args(default_per_page=50, max_per_page=200):
    """Read ``page`` / ``per_page`` query params with defaults and a cap.

    Returns:
        (page, per_page)
    """
    try:
        page = max(int(request.args.get("page", 1)), 1)
    except (ValueError, TypeError):
        page = 1
    try:
        per_page = min(max(int(request.args.get("per_page", default_per_page)), 1), max_per_page)
    except (ValueError, TypeError):
        per_page = default_per_page
    return page, per_page
