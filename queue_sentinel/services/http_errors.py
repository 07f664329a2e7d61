"""
Diagnostic details for httpx transport failures.

httpx wraps the socket error several layers deep; these helpers dig out the
errno and peer so alerts can say what actually failed.
"""

import errno as errno_codes

import httpx

_SYSCALL_BY_ERROR: tuple[tuple[type[httpx.RequestError], str], ...] = (
    (httpx.ConnectError, "connect"),
    (httpx.ConnectTimeout, "connect"),
    (httpx.ReadError, "read"),
    (httpx.ReadTimeout, "read"),
    (httpx.WriteError, "write"),
    (httpx.WriteTimeout, "write"),
    (httpx.PoolTimeout, "pool"),
)


def _find_os_error(exc: BaseException) -> OSError | None:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, OSError) and current.errno is not None:
            return current
        current = current.__cause__ or current.__context__
    return None


def transport_error_details(exc: httpx.RequestError) -> dict:
    """
    Extract errno/code/syscall/address/port from an httpx transport error.

    Missing values are returned as None.
    """
    details: dict = {"errno": None, "code": None, "syscall": None, "address": None, "port": None}

    os_error = _find_os_error(exc)
    if os_error is not None:
        details["errno"] = os_error.errno
        details["code"] = errno_codes.errorcode.get(os_error.errno)
    elif isinstance(exc, httpx.TimeoutException):
        details["errno"] = errno_codes.ETIMEDOUT
        details["code"] = "ETIMEDOUT"

    for error_type, syscall in _SYSCALL_BY_ERROR:
        if isinstance(exc, error_type):
            details["syscall"] = syscall
            break

    try:
        url = exc.request.url
    except RuntimeError:
        # Raised by httpx when the error was built without a request
        url = None

    if url is not None:
        details["address"] = url.host or None
        details["port"] = url.port or (443 if url.scheme == "https" else 80)

    return details
