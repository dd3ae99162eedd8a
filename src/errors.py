""" Exception types shared across the generation pipeline. """


class ClixenError(Exception):
    """ Base class for pipeline errors that may reach a caller. """


class CandidateUnparseable(ClixenError):
    """ The candidate source returned something no graph can be built from. """


class CandidateUnavailable(ClixenError):
    """ A candidate source had nothing to offer for the given intent. """


class DeploymentError(ClixenError):
    """ Base class for failures reported by the workflow engine. """
    kind = "error"


class DeploymentTimeout(DeploymentError):
    kind = "timeout"


class DeploymentRejected(DeploymentError):
    kind = "rejected"


class DeploymentUnavailable(DeploymentError):
    """ The engine stayed unreachable or erroring after the retry budget. """
    kind = "unavailable"


# Graph construction errors are programmer errors, not defects.

class DuplicateIdError(ValueError):
    pass


class UnknownEndpointError(ValueError):
    pass


class OwnerImmutableError(ValueError):
    pass
