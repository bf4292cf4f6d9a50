from django.apps import AppConfig


class VisitorDeskConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "visitor_desk"
    verbose_name = "ResiGuard Visitor Desk"
