class ForceNextError(Exception):
    pass


class MalformedExchange(ForceNextError):
    """A network exchange matched a kind but could not be parsed."""


class UnresolvedCorrelation(ForceNextError):
    """A cache lookup needed to resolve the next episode missed."""


class StaleSession(ForceNextError):
    """A callback fired after the session that owns it was closed."""


class NavigationPreconditionFailure(ForceNextError):
    """No usable next-episode identifier at decision time."""
