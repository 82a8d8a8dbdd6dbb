"""
Request URL to logical path conversion
"""


def resolve(raw_url_path: str, prefix: str) -> str:
    """
    Convert a request URL path into a logical resource path

    The configured prefix is stripped and surrounding slashes trimmed. A path
    outside the prefix maps to the root "/" rather than failing.

    Args:
        raw_url_path: Decoded path component of the request URL
        prefix: Prefix to strip; an empty prefix strips nothing

    Returns:
        Logical path relative to the prefix
    """
    if not raw_url_path:
        return "/"

    if not raw_url_path.startswith(prefix):
        return "/"

    return raw_url_path[len(prefix):].strip("/")
