import importlib

import pytest
from django.urls import reverse
from rest_framework import exceptions
from rest_framework.test import APIRequestFactory

from visitor_desk import services
from visitor_desk.authentication import SessionTokenAuthentication


def test_url_configuration_imports_cleanly():
    urls = importlib.import_module("resiguard.urls")

    assert urls.urlpatterns
    assert reverse("visitor_desk:health-check") == "/api/health/"


def test_views_and_exception_handler_import_cleanly():
    views = importlib.import_module("visitor_desk.views")
    handler = importlib.import_module("visitor_desk.exceptions").desk_exception_handler

    assert callable(views.login_view)
    assert callable(handler)


def authenticate(header):
    request = APIRequestFactory().get("/api/visitors/", HTTP_AUTHORIZATION=header)
    return SessionTokenAuthentication().authenticate(request)


def test_foreign_scheme_is_ignored():
    assert authenticate("Basic dXNlcjpwYXNz") is None


def test_non_utf8_scheme_is_ignored():
    assert authenticate("B\xe9arer abc") is None


def test_non_utf8_token_is_refused():
    with pytest.raises(exceptions.AuthenticationFailed):
        authenticate("Bearer \xff\xfe")


def test_header_without_token_is_refused():
    with pytest.raises(exceptions.AuthenticationFailed):
        authenticate("Bearer")


@pytest.mark.django_db
def test_bearer_and_token_schemes_resolve_the_session(officer):
    session = services.login("officer", "secret")

    assert authenticate(f"Bearer {session.key}") == (officer, session.key)
    assert authenticate(f"token {session.key}") == (officer, session.key)
