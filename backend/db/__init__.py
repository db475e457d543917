from . import database  # noqa: F401
