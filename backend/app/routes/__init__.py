"""HTTP routers. Registration routes mount under /api; metrics stay unprefixed."""

from . import prometheus as prometheus, registrations as registrations
