class M33TError(Exception):
    """Base class for errors the flows raise on purpose."""
    status_code = 500


class ValidationError(M33TError):
    """Missing or malformed request input, including bad chain addresses."""
    status_code = 400


class AuthenticationError(M33TError):
    status_code = 401


class NotFoundError(M33TError):
    status_code = 404


class UpstreamError(M33TError):
    """Chain RPC, AMM gateway or custodial provider failure. The message is passed through."""
    status_code = 500


class DuplicateMintError(M33TError):
    """A ledger row for this mint address already exists."""
    status_code = 409
