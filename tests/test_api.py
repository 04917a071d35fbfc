from datetime import datetime
from unittest import mock

import pytest
import requests

from canvas_course_sync.api import (
    CanvasAPI,
    CanvasAPIError,
    CanvasConnectionError,
    CanvasValidationError,
    InvalidTokenError,
    NotFoundError,
    PermissionDeniedError,
    form_params,
    format_timestamp,
)

BASE = "https://canvas.test"


def make_response(status_code=200, json_data=None, links=None):
    """Build a stand-in for requests.Response."""
    response = mock.MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.json.return_value = json_data if json_data is not None else {}
    response.text = "{}" if json_data is None else str(json_data)
    response.links = links or {}
    return response


@pytest.fixture
def api():
    return CanvasAPI(BASE + "/", "42", "secret-token")


@pytest.fixture
def mock_request():
    with mock.patch("canvas_course_sync.api.requests.request") as patched:
        yield patched


def test_requests_are_course_scoped_and_authenticated(api, mock_request):
    """Test the URL, auth header and timeout of a simple GET."""
    mock_request.return_value = make_response(json_data={"id": 5, "name": "HW1"})

    assert api.get_assignment(5) == {"id": 5, "name": "HW1"}

    args, kwargs = mock_request.call_args
    assert args == ("GET", f"{BASE}/api/v1/courses/42/assignments/5")
    assert kwargs["headers"]["Authorization"] == "Bearer secret-token"
    assert kwargs["timeout"] == 30


def test_get_file_uses_root_endpoint(api, mock_request):
    """Test that files are fetched outside the course scope."""
    mock_request.return_value = make_response(json_data={"id": 9})

    api.get_file(9)

    assert mock_request.call_args.args[1] == f"{BASE}/api/v1/files/9"


def test_pagination_follows_next_links(api, mock_request):
    """Test that list endpoints follow Link: rel=next until exhausted."""
    mock_request.side_effect = [
        make_response(json_data=[{"id": 1}], links={"next": {"url": f"{BASE}/next-page"}}),
        make_response(json_data=[{"id": 2}]),
    ]

    assert api.get_files() == [{"id": 1}, {"id": 2}]

    first, second = mock_request.call_args_list
    assert first.kwargs["params"] == {"per_page": 100}
    assert second.args[1] == f"{BASE}/next-page"
    assert second.kwargs["params"] is None


def test_modules_are_sorted_by_position(api, mock_request):
    """Test that get_modules orders modules by position."""
    mock_request.return_value = make_response(json_data=[
        {"id": 2, "position": 2},
        {"id": 1, "position": 1},
    ])

    assert [m["id"] for m in api.get_modules()] == [1, 2]


@pytest.mark.parametrize("status, error_class", [
    (401, InvalidTokenError),
    (403, PermissionDeniedError),
    (404, NotFoundError),
    (422, CanvasValidationError),
])
def test_status_codes_map_to_typed_errors(api, mock_request, status, error_class):
    """Test that each failing status raises its own error type."""
    mock_request.return_value = make_response(status, {"errors": [{"message": "nope"}]})

    with pytest.raises(error_class) as excinfo:
        api.get_page("syllabus")

    assert excinfo.value.status_code == status
    assert excinfo.value.details == "nope"
    assert "nope" in str(excinfo.value)


def test_validation_details_from_field_errors(api, mock_request):
    """Test that Canvas' per-field error mapping is flattened into the message."""
    mock_request.return_value = make_response(422, {"errors": {"name": [{"message": "is too long"}]}})

    with pytest.raises(CanvasValidationError, match="name: is too long"):
        api.create_module("x" * 300)


def test_other_statuses_raise_base_error(api, mock_request):
    """Test that unmapped statuses raise CanvasAPIError itself."""
    mock_request.return_value = make_response(500, {"message": "boom"})

    with pytest.raises(CanvasAPIError) as excinfo:
        api.get_module(1)

    assert type(excinfo.value) is CanvasAPIError
    assert excinfo.value.status_code == 500


@pytest.mark.parametrize("exc", [requests.ConnectionError("down"), requests.Timeout("slow")])
def test_network_failures_raise_connection_error(api, mock_request, exc):
    """Test that transport failures become CanvasConnectionError."""
    mock_request.side_effect = exc

    with pytest.raises(CanvasConnectionError):
        api.get_modules()


def test_form_params_flattens_nested_values():
    """Test Canvas' bracketed form encoding."""
    params = {
        "assignment": {
            "name": "HW1",
            "points_possible": 10.0,
            "published": True,
            "due_at": None,
            "submission_types": ["online_text_entry", "online_upload"],
        },
    }

    assert form_params(params) == [
        ("assignment[name]", "HW1"),
        ("assignment[points_possible]", "10"),
        ("assignment[published]", "true"),
        ("assignment[submission_types][]", "online_text_entry"),
        ("assignment[submission_types][]", "online_upload"),
    ]


def test_update_assignment_never_sends_submission_types(api, mock_request):
    """Test that updates leave submission types alone and skip unset fields."""
    mock_request.return_value = make_response(json_data={"id": 5})

    api.update_assignment(5, description="<p>New</p>")

    method, url = mock_request.call_args.args
    assert method == "PUT"
    assert url == f"{BASE}/api/v1/courses/42/assignments/5"
    assert mock_request.call_args.kwargs["data"] == [("assignment[description]", "<p>New</p>")]


def test_create_module_item_payload(api, mock_request):
    """Test the module item form fields for an external link."""
    mock_request.return_value = make_response(json_data={"id": 1})

    api.create_module_item(7, "ExternalUrl", title="Site", external_url="https://x.org", new_tab=True)

    assert mock_request.call_args.kwargs["data"] == [
        ("module_item[type]", "ExternalUrl"),
        ("module_item[title]", "Site"),
        ("module_item[external_url]", "https://x.org"),
        ("module_item[new_tab]", "true"),
    ]


def test_graded_discussion_payload(api, mock_request):
    """Test that graded discussions carry a nested assignment."""
    mock_request.return_value = make_response(json_data={"id": 3})

    api.create_discussion("Intros", "<p>Hi</p>", graded=True, points_possible=5)

    data = dict(mock_request.call_args.kwargs["data"])
    assert data["title"] == "Intros"
    assert data["discussion_type"] == "threaded"
    assert data["assignment[points_possible]"] == "5"
    assert data["published"] == "true"


def test_ungrading_a_discussion_detaches_its_assignment(api, mock_request):
    """Test that graded=False on update asks Canvas to drop the assignment."""
    mock_request.return_value = make_response(json_data={"id": 3})

    api.update_discussion(3, graded=False)

    assert mock_request.call_args.kwargs["data"] == [("assignment[set_assignment]", "false")]


def test_naive_timestamps_get_an_offset():
    """Test that naive due dates are sent with the local offset."""
    value = format_timestamp(datetime(2026, 1, 15, 23, 59))
    assert value.startswith("2026-01-15T23:59:00")
    assert value[-6] in "+-"


def test_addresses(api):
    """Test the browser URLs used for cross-references."""
    assert api.page_url("syllabus") == f"{BASE}/courses/42/pages/syllabus"
    assert api.assignment_url(5) == f"{BASE}/courses/42/assignments/5"
    assert api.discussion_url(6) == f"{BASE}/courses/42/discussion_topics/6"
    assert api.file_url(7) == f"{BASE}/courses/42/files/7"


def test_cleared_assignment_fields_are_sent_empty(api, mock_request):
    """Test that fields listed in clear reach Canvas as empty values."""
    mock_request.return_value = make_response(json_data={"id": 5})

    api.update_assignment(5, points_possible=10.0, clear=["due_at"])

    assert mock_request.call_args.kwargs["data"] == [
        ("assignment[points_possible]", "10"),
        ("assignment[due_at]", ""),
    ]


def test_cleared_discussion_fields_are_sent_empty(api, mock_request):
    """Test that a graded discussion update can remove its points."""
    mock_request.return_value = make_response(json_data={"id": 3})

    api.update_discussion(3, graded=True, clear=["points_possible"])

    assert mock_request.call_args.kwargs["data"] == [("assignment[points_possible]", "")]
