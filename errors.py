"""
Error taxonomy for the statistics service.

Every failure that can reach a client carries a stable machine-readable code
and a generic message; upstream error text stays in the logs.
"""


class SpotalystError(Exception):
    """Base class for errors rendered as JSON responses"""

    code = 'internal_error'
    status_code = 500
    public_message = 'Internal server error'

    def to_dict(self):
        return {'error': self.public_message, 'code': self.code}


class Unauthenticated(SpotalystError):
    code = 'unauthenticated'
    status_code = 401
    public_message = 'Authentication required'


class UpstreamUnavailable(SpotalystError):
    """Spotify or the LLM provider failed, timed out or refused the call"""

    code = 'upstream_unavailable'
    status_code = 502
    public_message = 'Upstream service unavailable'

    def __init__(self, message, service='spotify', status=None):
        super().__init__(message)
        self.service = service
        self.status = status


class CacheStoreUnavailable(SpotalystError):
    code = 'cache_store_unavailable'
    status_code = 503
    public_message = 'Cache store unavailable'


class MalformedAIResponse(SpotalystError):
    """The model reply could not be parsed; always recovered locally"""

    code = 'malformed_ai_response'
