"""ULID generation for ArcadeGate.

ULIDs serve two purposes:
  - the opaque, immutable ``id`` of every access key
  - the request id bound to log context and echoed in ``X-Request-ID``

ULID specification (https://github.com/ulid/spec):
  - 26 characters, Crockford Base32 encoded (0-9A-HJKMNP-TV-Z)
  - 48-bit millisecond timestamp + 80-bit random component
  - URL-safe, so key ids can appear directly in admin route paths

Uses the ``python-ulid`` library.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Return a new ULID as a 26-character uppercase string.

    Example::

        key_id = generate_ulid()
        # "01KJ0JRVHYA7KX32VPN5ZSCTMV"
        assert len(key_id) == 26
    """
    return str(ULID())
