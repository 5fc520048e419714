"""Request provenance for audit entries.

Handlers pull the caller's IP and user agent out of the request they are
serving and pass them to the audit recorder explicitly; the recorder never
reads request state itself.
"""


def get_request_client_info(req):
    """Return (ip_address, user_agent) for a Flask request. Best-effort."""
    user_agent = req.headers.get("User-Agent") or None

    forwarded_for = req.headers.get("X-Forwarded-For")
    if forwarded_for:
        ip_address = forwarded_for.split(",")[0].strip() or None
    else:
        ip_address = req.headers.get("X-Real-IP") or req.remote_addr

    return ip_address, user_agent
