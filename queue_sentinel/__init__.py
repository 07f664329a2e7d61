"""
Mail queue sentinel.

Watches a Zimbra server's deferred queue for institutional accounts sending
from new foreign origins and locks them down.
"""
