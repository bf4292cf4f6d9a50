from django.urls import path
from . import views

app_name = "visitor_desk"

urlpatterns = [

    # =========================================================================
    # SYSTEM / HEALTH
    # =========================================================================
    path("health/",                     views.health_check,                  name="health-check"),

    # =========================================================================
    # AUTHENTICATION
    # =========================================================================
    path("auth/login/",                 views.login_view,                    name="auth-login"),
    path("auth/logout/",                views.logout_view,                   name="auth-logout"),
    path("auth/me/",                    views.me_view,                       name="auth-me"),

    # =========================================================================
    # USERS
    # =========================================================================
    path("users/",                      views.user_list_create,              name="user-list"),
    path("users/<int:user_id>/",        views.user_detail,                   name="user-detail"),
    path("users/<int:user_id>/role/",   views.user_change_role,              name="user-role"),

    # =========================================================================
    # COMPANY PROFILE
    # =========================================================================
    path("company/",                    views.company_profile_view,          name="company-profile"),

    # =========================================================================
    # UNITS
    # =========================================================================
    path("units/",                              views.unit_list_create,      name="unit-list"),
    path("units/<str:block>/<str:house_no>/",   views.unit_delete,           name="unit-delete"),

    # =========================================================================
    # VISITORS  (CORE)
    # =========================================================================
    path("visitors/",                               views.visitor_list_create,   name="visitor-list"),
    path("visitors/<int:visitor_id>/",              views.visitor_detail,        name="visitor-detail"),
    path("visitors/<int:visitor_id>/approve/",      views.visitor_approve,       name="visitor-approve"),
    path("visitors/<int:visitor_id>/reject/",       views.visitor_reject,        name="visitor-reject"),
    path("visitors/<int:visitor_id>/checkin/",      views.visitor_checkin,       name="visitor-checkin"),
    path("visitors/<int:visitor_id>/checkout/",     views.visitor_checkout,      name="visitor-checkout"),

    # =========================================================================
    # SUPPORT CHAT
    # =========================================================================
    # "active/" BEFORE the parameterised detail
    path("chats/active/",                           views.chat_active,           name="chat-active"),
    path("chats/",                                  views.chat_list_create,      name="chat-list"),
    path("chats/<int:thread_id>/",                  views.chat_detail,           name="chat-detail"),
    path("chats/<int:thread_id>/reply/",            views.chat_reply,            name="chat-reply"),
    path("chats/<int:thread_id>/admin-reply/",      views.chat_admin_reply,      name="chat-admin-reply"),
    path("chats/<int:thread_id>/dismiss/",          views.chat_dismiss,          name="chat-dismiss"),

    # =========================================================================
    # DASHBOARD
    # =========================================================================
    path("overview/",                   views.overview_view,                 name="overview"),
    path("activity/",                   views.activity_view,                 name="activity"),

    # =========================================================================
    # DATA SNAPSHOT
    # =========================================================================
    path("data/",                       views.data_view,                     name="data"),
]
