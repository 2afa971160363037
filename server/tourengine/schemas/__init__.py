"""Pydantic schemas for request/response validation."""

from .booking import *  # noqa: F403
from .common import *  # noqa: F403
from .guide import *  # noqa: F403
from .health import *  # noqa: F403
from .offer import *  # noqa: F403
from .payment import *  # noqa: F403
from .pricing import *  # noqa: F403
from .slot import *  # noqa: F403
from .sweep import *  # noqa: F403
from .tour import *  # noqa: F403
