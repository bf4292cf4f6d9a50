from rest_framework import exceptions
from rest_framework.authentication import BaseAuthentication, get_authorization_header


class SessionTokenAuthentication(BaseAuthentication):
    """
    Bearer-token auth over desk sessions.

        Authorization: Bearer <session token>

    "Token <key>" is accepted as well for older clients.
    """
    keywords = (b"bearer", b"token")

    def authenticate(self, request):
        auth = get_authorization_header(request).split()
        if not auth or auth[0].lower() not in self.keywords:
            return None
        if len(auth) != 2:
            raise exceptions.AuthenticationFailed("Invalid token header.")
        try:
            token = auth[1].decode()
        except UnicodeError:
            raise exceptions.AuthenticationFailed("Invalid token header.")

        # DRF loads this class while importing its views; services pulls in
        # the exception handler module, which imports those same views.
        from . import services

        user = services.resolve(token)
        if user is None or not user.is_active:
            raise exceptions.AuthenticationFailed("Session expired. Please log in again.")
        return user, token

    def authenticate_header(self, request):
        return "Bearer"
