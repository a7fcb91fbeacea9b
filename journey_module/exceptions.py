class JourneyPlannerError(Exception):
    """Base class for journey planner errors."""


class GraphUnavailable(JourneyPlannerError):
    """The network store cannot be read or returned malformed data."""


class NoRouteFound(JourneyPlannerError):
    """Raised only by callers that opt in via PlanResult.raise_if_empty()."""


class CollaboratorError(JourneyPlannerError):
    """A call to the live departures source failed."""


class CollaboratorTimeout(CollaboratorError):
    pass


class CollaboratorMalformed(CollaboratorError):
    pass
