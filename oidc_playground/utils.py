from starlette.datastructures import URL


def is_secure_transport(url: str | URL) -> bool:
    """
    Return `True` if the given URL is HTTPS or for a loopback address; `False` otherwise.
    """
    if not isinstance(url, URL):
        url = URL(url)

    return url.scheme == "https" or url.hostname in ["127.0.0.1", "::1", "localhost"]


def tenant_url(issuer: str, tenant: str, path: str) -> str:
    """
    Build a tenant-scoped endpoint URL, e.g. `{issuer}/{tenant}/oauth2/token`.
    """
    return f"{issuer.rstrip('/')}/{tenant.strip('/')}/{path.lstrip('/')}"


def issuer_url(issuer: str, path: str) -> str:
    """
    Build an issuer-level endpoint URL, e.g. `{issuer}/oauth2/introspect`.
    """
    return f"{issuer.rstrip('/')}/{path.lstrip('/')}"


def unique(values) -> list[str]:
    """
    Drop empty and repeated values, keeping first-seen order.
    """
    return list(dict.fromkeys(v for v in values if v))
