import pytest

from relying_party.errors import (
    AppError,
    ErrorKind,
    authentication_error,
    configuration_error,
    service_error,
    session_expired,
    session_not_found,
    validation_error,
)


@pytest.mark.parametrize(
    ("error", "status"),
    [
        (authentication_error(), 401),
        (session_not_found(), 404),
        (session_expired(), 401),
        (validation_error("bad"), 400),
        (AppError(ErrorKind.INVALID_PRESENTATION, "nope"), 400),
        (configuration_error("missing"), 500),
        (service_error("down"), 500),
    ],
)
def test_error_kinds_map_to_http_status(error, status):
    assert error.status_code == status
    assert error.to_response().status == status
    assert error.to_response().code == error.kind.value


def test_stack_trace_only_for_server_side_errors():
    try:
        raise service_error("down", context={"operation": "read"})
    except AppError as exc:
        server = exc
    try:
        raise validation_error("bad")
    except AppError as exc:
        client = exc

    assert server.to_response(include_stack_trace=True).stack
    assert server.to_response().stack is None
    assert client.to_response(include_stack_trace=True).stack is None
    assert server.to_response().context == {"operation": "read"}
